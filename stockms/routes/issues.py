# Overview: Flask API routes for stock issues; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_permission
from ..services import access_service, issue_service
from stockms.validation import DomainError, parse_date
from .helpers import error_response, pagination_args, paginated, unexpected_error, visible_location_ids


issues_bp = Blueprint("issues", __name__, url_prefix="/api/issues")


@issues_bp.get("")
@require_auth
@require_permission("VIEW_DOCUMENTS")
def list_issues():
    limit, offset = pagination_args()
    try:
        issues, total = issue_service.list_issues(
            location_id=request.args.get("location_id", type=int),
            location_ids=visible_location_ids(),
            period_id=request.args.get("period_id", type=int),
            cost_centre=request.args.get("cost_centre"),
            from_date=parse_date(request.args.get("from"), "from", required=False),
            to_date=parse_date(request.args.get("to"), "to", required=False),
            limit=limit,
            offset=offset,
        )
        return paginated(issues, total, limit, offset, key="issues"), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("listing issues")


@issues_bp.get("/<int:issue_id>")
@require_auth
@require_permission("VIEW_DOCUMENTS")
def get_issue(issue_id: int):
    try:
        issue = issue_service.get_issue(issue_id)
        access_service.require_location_access(g.current_user, issue.location_id)
        return jsonify(issue.to_dict(include_lines=True)), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("loading issue")
