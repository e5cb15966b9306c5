# Overview: Daily persons-on-board headcounts per location and period.

from __future__ import annotations

from ..extensions import db
from ..models import POB, User
from stockms.validation import ConflictError, NotFoundError, ValidationError, parse_date, parse_int
from .access_service import require_location_access
from .concurrency import run_with_retry
from .ledger_service import append_ledger_event
from .period_service import LOCATION_STATUS_OPEN, get_open_period, get_period, get_period_location


class POBNotFoundError(NotFoundError):
    default_code = "POB_NOT_FOUND"


class POBValidationError(ValidationError):
    pass


class POBStateError(ConflictError):
    pass


def _parse_counts(entry: dict, prefix: str) -> tuple[int, int]:
    crew = parse_int(entry.get("crew_count", 0), f"{prefix}.crew_count", non_negative=True)
    extra = parse_int(entry.get("extra_count", 0), f"{prefix}.extra_count", non_negative=True)
    return crew, extra


def _require_editable(period_id: int, location_id: int) -> None:
    pl = get_period_location(period_id, location_id)
    if pl.status != LOCATION_STATUS_OPEN:
        raise POBStateError(
            f"POB cannot be changed: location is {pl.status} for this period",
            code="PERIOD_CLOSED",
        )


def save_pob_entries(location_id: int, entries, *, user: User, period_id: int | None = None) -> list[POB]:
    """
    Upsert daily counts for one location.

    entries: [{date, crew_count, extra_count}]; every date must fall inside
    the period, which defaults to the current OPEN one.
    """
    if not isinstance(entries, list) or not entries:
        raise POBValidationError("At least one entry is required")

    parsed = {}
    for idx, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise POBValidationError(f"entries[{idx}] must be an object")
        day = parse_date(entry.get("date"), f"entries[{idx}].date")
        if day in parsed:
            raise POBValidationError(f"Date {day.isoformat()} appears more than once", code="DUPLICATE_DATE")
        parsed[day] = _parse_counts(entry, f"entries[{idx}]")

    def _op():
        if period_id is not None:
            period = get_period(period_id)
        else:
            period = get_open_period()
            if period is None:
                raise POBStateError("No open period", code="NO_OPEN_PERIOD")
        require_location_access(user, location_id, post=True)
        _require_editable(period.id, location_id)

        outside = sorted(d.isoformat() for d in parsed if not period.contains(d))
        if outside:
            raise POBValidationError(
                f"Dates outside period {period.name}",
                code="DATE_OUTSIDE_PERIOD",
                details={"dates": outside},
            )

        existing = {
            row.date: row
            for row in db.session.query(POB)
            .filter(POB.period_id == period.id, POB.location_id == location_id, POB.date.in_(parsed.keys()))
            .all()
        }
        rows = []
        for day, (crew, extra) in sorted(parsed.items()):
            row = existing.get(day)
            if row is None:
                row = POB(period_id=period.id, location_id=location_id, date=day)
                db.session.add(row)
            row.crew_count = crew
            row.extra_count = extra
            row.entered_by_user_id = user.id
            rows.append(row)
        db.session.flush()

        append_ledger_event(
            location_id=location_id,
            event_type="pob.saved",
            event_category="periods",
            entity_type="period",
            entity_id=period.id,
            actor_user_id=user.id,
            note=f"{len(rows)} POB day(s) saved",
        )

        db.session.commit()
        return rows

    return run_with_retry(_op)


def update_pob_entry(pob_id: int, *, user: User, crew_count=None, extra_count=None) -> POB:
    def _op():
        row = db.session.get(POB, pob_id)
        if not row:
            raise POBNotFoundError(f"POB entry {pob_id} not found")
        require_location_access(user, row.location_id, post=True)
        _require_editable(row.period_id, row.location_id)

        if crew_count is not None:
            row.crew_count = parse_int(crew_count, "crew_count", non_negative=True)
        if extra_count is not None:
            row.extra_count = parse_int(extra_count, "extra_count", non_negative=True)
        row.entered_by_user_id = user.id

        append_ledger_event(
            location_id=row.location_id,
            event_type="pob.updated",
            event_category="periods",
            entity_type="pob",
            entity_id=row.id,
            actor_user_id=user.id,
            note=f"POB {row.date.isoformat()} updated",
        )

        db.session.commit()
        return row

    return run_with_retry(_op)


def get_pob(location_id: int, period_id: int | None = None) -> dict:
    """Entries of a period (default: current OPEN) with the manday total."""
    if period_id is not None:
        period = get_period(period_id)
    else:
        period = get_open_period()
        if period is None:
            raise POBStateError("No open period", code="NO_OPEN_PERIOD")

    rows = (
        db.session.query(POB)
        .filter(POB.period_id == period.id, POB.location_id == location_id)
        .order_by(POB.date.asc())
        .all()
    )
    return {
        "period_id": period.id,
        "location_id": location_id,
        "entries": [row.to_dict() for row in rows],
        "total_mandays": sum(row.total_count for row in rows),
    }
