# Overview: Service-layer operations for stock issues charged to a cost centre.

"""
Issue Service

WHY: Issues are how stock is consumed. Each line is valued at the location's
WAC at the moment of issue; the WAC itself never moves on an issue.

Issues are posted on creation and are immutable afterwards.
"""

from __future__ import annotations

from datetime import date

from ..extensions import db
from ..models import Issue, IssueLine, Item, Location, User
from stockms.money import ZERO, round2, round4, to_decimal
from stockms.time_utils import today, utcnow
from stockms.validation import NotFoundError, ValidationError, clean_text, parse_choice, parse_date, parse_decimal, parse_int
from .access_service import require_location_access
from .concurrency import run_with_retry
from .document_service import next_yearly_number
from .inventory_service import InsufficientStockError, apply_issue, check_stock_sufficiency, get_stock
from .ledger_service import append_ledger_event
from .period_service import require_open_period_for_location


COST_CENTRES = {"FOOD", "CLEAN", "OTHER"}


class IssueNotFoundError(NotFoundError):
    default_code = "ISSUE_NOT_FOUND"


class IssueValidationError(ValidationError):
    pass


def _parse_lines(lines) -> list[dict]:
    if not isinstance(lines, list) or not lines:
        raise IssueValidationError("At least one line is required")

    parsed = []
    for idx, line in enumerate(lines):
        if not isinstance(line, dict):
            raise IssueValidationError(f"lines[{idx}] must be an object")
        parsed.append({
            "item_id": parse_int(line.get("item_id"), f"lines[{idx}].item_id"),
            "quantity": parse_decimal(line.get("quantity"), f"lines[{idx}].quantity", positive=True),
        })
    return parsed


def create_issue(
    *,
    location_id: int,
    cost_centre: str,
    lines,
    user: User,
    issue_date: date | str | None = None,
    notes: str | None = None,
) -> Issue:
    """
    Issue stock from a location.

    All lines are checked against on_hand before anything moves; a shortfall
    on any line rejects the whole issue with INSUFFICIENT_STOCK and the
    per-item shortfalls in details.
    """
    cost_centre = parse_choice(cost_centre, "cost_centre", COST_CENTRES)
    parsed = _parse_lines(lines)
    issue_date = parse_date(issue_date, "issue_date", required=False) or today()
    notes = clean_text(notes, "notes")

    def _op():
        location = db.session.get(Location, location_id)
        if not location:
            raise IssueNotFoundError(f"Location {location_id} not found", code="LOCATION_NOT_FOUND")
        if not location.is_active:
            raise IssueValidationError("Location is inactive", code="LOCATION_INACTIVE")
        require_location_access(user, location_id, post=True)

        period, _ = require_open_period_for_location(location_id)

        item_ids = {line["item_id"] for line in parsed}
        found = {
            item.id
            for item in db.session.query(Item).filter(Item.id.in_(item_ids), Item.is_active.is_(True)).all()
        }
        missing = sorted(item_ids - found)
        if missing:
            raise IssueValidationError(
                "One or more items not found or inactive",
                code="INVALID_ITEMS",
                details={"item_ids": missing},
            )

        shortfalls = check_stock_sufficiency(location_id, parsed)
        if shortfalls:
            raise InsufficientStockError(
                f"Insufficient stock for {len(shortfalls)} item(s)",
                details=shortfalls,
            )

        issue = Issue(
            issue_no=next_yearly_number("ISSUE", "ISS"),
            location_id=location_id,
            period_id=period.id,
            issue_date=issue_date,
            cost_centre=cost_centre,
            notes=notes,
            created_by_user_id=user.id,
            posted_at=utcnow(),
        )

        total = ZERO
        rows = []
        for line in parsed:
            stock = get_stock(location_id, line["item_id"])
            wac = round4(to_decimal(stock.wac)) if stock else ZERO
            value = round2(line["quantity"] * wac)
            apply_issue(location_id, line["item_id"], line["quantity"])
            rows.append(IssueLine(
                item_id=line["item_id"],
                quantity=line["quantity"],
                wac_at_issue=wac,
                line_value=value,
            ))
            total += value

        issue.lines = rows
        issue.total_value = round2(total)
        db.session.add(issue)
        db.session.flush()

        append_ledger_event(
            location_id=location_id,
            event_type="issue.posted",
            event_category="issues",
            entity_type="issue",
            entity_id=issue.id,
            actor_user_id=user.id,
            note=f"{issue.issue_no} issued to {cost_centre}",
            payload={"total_value": str(issue.total_value), "line_count": len(rows)},
        )

        db.session.commit()
        return issue

    return run_with_retry(_op)


def get_issue(issue_id: int) -> Issue:
    issue = db.session.get(Issue, issue_id)
    if not issue:
        raise IssueNotFoundError(f"Issue {issue_id} not found")
    return issue


def list_issues(
    *,
    location_id: int | None = None,
    location_ids: set[int] | None = None,
    period_id: int | None = None,
    cost_centre: str | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Issue], int]:
    query = db.session.query(Issue)
    if location_id:
        query = query.filter(Issue.location_id == location_id)
    if location_ids is not None:
        query = query.filter(Issue.location_id.in_(location_ids or {-1}))
    if period_id:
        query = query.filter(Issue.period_id == period_id)
    if cost_centre:
        query = query.filter(Issue.cost_centre == cost_centre)
    if from_date:
        query = query.filter(Issue.issue_date >= from_date)
    if to_date:
        query = query.filter(Issue.issue_date <= to_date)

    total = query.count()
    issues = (
        query.order_by(Issue.issue_date.desc(), Issue.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return issues, total
