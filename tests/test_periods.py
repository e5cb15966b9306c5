"""
Period lifecycle tests.

Verifies:
- Prices change freely while DRAFT; later only unpriced items may be priced
- Only one period is OPEN at a time and periods never overlap
- A close needs every location READY, an ADMIN request and an ADMIN approval
- Closing snapshots stock values; roll-forward carries them and the prices
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from stockms.models import Item, PeriodLocation
from stockms.services import (
    approval_service,
    delivery_service,
    period_service,
    pricing_service,
    reconciliation_service,
)
from stockms.services.period_service import (
    PeriodPermissionError,
    PeriodStateError,
    PeriodValidationError,
)
from stockms.services.pricing_service import PricingStateError, PricingValidationError

from conftest import current_month_dates


def _ready_all(period, user, *locations):
    for location in locations:
        reconciliation_service.save_reconciliation(period.id, location.id, user=user)
        period_service.mark_location_ready(period.id, location.id, user=user)


# =============================================================================
# CREATE / OPEN / PRICES
# =============================================================================


class TestPeriodSetup:

    def test_new_period_is_draft_with_every_location(self, db_session, admin, kitchen, store):
        start, end = current_month_dates()
        period = period_service.create_period(name="Draft", start_date=start, end_date=end, user=admin)

        assert period.status == period_service.PERIOD_STATUS_DRAFT
        assert {pl.location_id for pl in period.period_locations} == {kitchen.id, store.id}
        assert all(pl.status == period_service.LOCATION_STATUS_OPEN for pl in period.period_locations)

    def test_end_must_follow_start(self, db_session, admin, kitchen):
        start, _ = current_month_dates()
        with pytest.raises(PeriodValidationError):
            period_service.create_period(name="Bad", start_date=start, end_date=start, user=admin)

    def test_overlap_rejected(self, db_session, open_period, admin):
        start, end = current_month_dates()
        with pytest.raises(PeriodStateError) as exc:
            period_service.create_period(
                name="Overlap", start_date=start + timedelta(days=1), end_date=end + timedelta(days=5), user=admin,
            )
        assert exc.value.code == "PERIOD_OVERLAP"

    def test_only_one_open_period(self, db_session, open_period, admin):
        _, end = current_month_dates()
        later = period_service.create_period(
            name="Next", start_date=end + timedelta(days=1), end_date=end + timedelta(days=30), user=admin,
        )
        with pytest.raises(PeriodStateError) as exc:
            period_service.open_period(later.id, user=admin)
        assert exc.value.code == "PERIOD_ALREADY_OPEN"

    def test_prices_locked_once_open(self, db_session, open_period, admin, items):
        rice, _ = items
        with pytest.raises(PricingStateError) as exc:
            pricing_service.set_period_prices(open_period.id, [{"item_id": rice.id, "price": "11.00"}], user=admin)
        assert exc.value.code == "PRICES_LOCKED"

        prices = pricing_service.get_price_map(open_period.id, [rice.id])
        assert prices[rice.id] == Decimal("10.0000")

    def test_new_item_can_be_priced_in_open_period(self, db_session, open_period, admin, operator, kitchen, supplier):
        flour = Item(code="FLOUR-01", name="Wheat Flour", unit="KG")
        db_session.add(flour)
        db_session.commit()

        pricing_service.set_period_prices(open_period.id, [{"item_id": flour.id, "price": "5"}], user=admin)

        assert pricing_service.get_price_map(open_period.id, [flour.id]) == {flour.id: Decimal("5.0000")}
        delivery = delivery_service.create_delivery(
            location_id=kitchen.id,
            supplier_id=supplier.id,
            delivery_date=None,
            lines=[{"item_id": flour.id, "quantity": 2, "unit_price": "5.00"}],
            user=operator,
            invoice_no="INV-FLOUR",
        )
        assert delivery.status == "POSTED"

    def test_open_period_batch_with_priced_item_is_rejected(self, db_session, open_period, admin, items):
        rice, _ = items
        flour = Item(code="FLOUR-01", name="Wheat Flour", unit="KG")
        db_session.add(flour)
        db_session.commit()

        with pytest.raises(PricingStateError) as exc:
            pricing_service.set_period_prices(
                open_period.id,
                [{"item_id": flour.id, "price": "5"}, {"item_id": rice.id, "price": "12"}],
                user=admin,
            )
        assert exc.value.code == "PRICES_LOCKED"
        assert exc.value.details == {"item_ids": [rice.id]}
        assert pricing_service.get_price_map(open_period.id, [flour.id]) == {}

    def test_inactive_item_cannot_be_priced(self, db_session, admin, items):
        rice, _ = items
        rice.is_active = False
        db_session.commit()
        start, end = current_month_dates()
        period = period_service.create_period(name="Draft", start_date=start, end_date=end, user=admin)

        with pytest.raises(PricingValidationError) as exc:
            pricing_service.set_period_prices(period.id, [{"item_id": rice.id, "price": "10"}], user=admin)
        assert exc.value.code == "INVALID_ITEMS"

    def test_closed_period_prices_locked(self, db_session, open_period, admin, kitchen, store):
        _ready_all(open_period, admin, kitchen, store)
        period_service.request_period_close(open_period.id, user=admin)
        period_service.approve_period_close(open_period.id, user=admin)
        flour = Item(code="FLOUR-01", name="Wheat Flour", unit="KG")
        db_session.add(flour)
        db_session.commit()

        with pytest.raises(PricingStateError) as exc:
            pricing_service.set_period_prices(open_period.id, [{"item_id": flour.id, "price": "5"}], user=admin)
        assert exc.value.code == "PRICES_LOCKED"

    def test_guard_reports_no_open_period(self, db_session, kitchen):
        with pytest.raises(PeriodStateError) as exc:
            period_service.require_open_period_for_location(kitchen.id)
        assert exc.value.code == "NO_OPEN_PERIOD"


# =============================================================================
# READINESS
# =============================================================================


class TestLocationReadiness:

    def test_ready_requires_saved_reconciliation(self, db_session, open_period, supervisor, kitchen):
        with pytest.raises(PeriodValidationError) as exc:
            period_service.mark_location_ready(open_period.id, kitchen.id, user=supervisor)
        assert exc.value.code == "RECONCILIATION_REQUIRED"

    def test_ready_location_blocks_posting(self, db_session, open_period, supervisor, operator, kitchen, items, supplier):
        rice, _ = items
        _ready_all(open_period, supervisor, kitchen)

        with pytest.raises(PeriodStateError) as exc:
            delivery_service.create_delivery(
                location_id=kitchen.id,
                supplier_id=supplier.id,
                delivery_date=None,
                lines=[{"item_id": rice.id, "quantity": 1, "unit_price": "10.00"}],
                user=operator,
                invoice_no="INV-READY",
            )
        assert exc.value.code == "PERIOD_CLOSED"

    def test_unready_reopens_location(self, db_session, open_period, supervisor, kitchen):
        _ready_all(open_period, supervisor, kitchen)
        pl = period_service.mark_location_unready(open_period.id, kitchen.id, user=supervisor)
        assert pl.status == period_service.LOCATION_STATUS_OPEN
        period_service.require_open_period_for_location(kitchen.id)


# =============================================================================
# CLOSE
# =============================================================================


class TestPeriodClose:

    def test_close_request_needs_admin(self, db_session, open_period, supervisor, kitchen, store):
        _ready_all(open_period, supervisor, kitchen, store)
        with pytest.raises(PeriodPermissionError) as exc:
            period_service.request_period_close(open_period.id, user=supervisor)
        assert exc.value.code == "ADMIN_REQUIRED"

    def test_close_request_needs_every_location_ready(self, db_session, open_period, admin, kitchen, store):
        _ready_all(open_period, admin, kitchen)
        with pytest.raises(PeriodStateError) as exc:
            period_service.request_period_close(open_period.id, user=admin)
        assert exc.value.code == "LOCATIONS_NOT_READY"
        assert [d["location_id"] for d in exc.value.details] == [store.id]

    def test_full_close_snapshots_values(
        self, db_session, open_period, admin, operator, kitchen, store, items, supplier
    ):
        rice, _ = items
        delivery_service.create_delivery(
            location_id=kitchen.id,
            supplier_id=supplier.id,
            delivery_date=None,
            lines=[{"item_id": rice.id, "quantity": 10, "unit_price": "10.00"}],
            user=operator,
            invoice_no="INV-CLOSE",
        )
        _ready_all(open_period, admin, kitchen, store)

        period, approval = period_service.request_period_close(open_period.id, user=admin)
        assert period.status == period_service.PERIOD_STATUS_PENDING_CLOSE
        assert approval.entity_type == approval_service.ENTITY_PERIOD_CLOSE

        period = period_service.approve_period_close(open_period.id, user=admin)
        assert period.status == period_service.PERIOD_STATUS_CLOSED

        kitchen_pl = db_session.query(PeriodLocation).filter_by(period_id=period.id, location_id=kitchen.id).one()
        assert kitchen_pl.status == period_service.LOCATION_STATUS_CLOSED
        assert kitchen_pl.closing_value == Decimal("100.00")
        assert kitchen_pl.snapshot_data["items"][0]["item_id"] == rice.id
        assert approval_service.get_approval(approval.id).status == approval_service.STATUS_APPROVED

    def test_reject_returns_period_to_open(self, db_session, open_period, admin, kitchen, store):
        _ready_all(open_period, admin, kitchen, store)
        _, approval = period_service.request_period_close(open_period.id, user=admin)

        approval_service.reject(approval.id, user=admin, comments="Counts disputed")

        assert period_service.get_period(open_period.id).status == period_service.PERIOD_STATUS_OPEN
        assert approval_service.get_approval(approval.id).status == approval_service.STATUS_REJECTED


# =============================================================================
# ROLL FORWARD
# =============================================================================


class TestRollForward:

    def test_requires_closed_source(self, db_session, open_period, admin):
        with pytest.raises(PeriodStateError):
            period_service.roll_forward_period(open_period.id, user=admin)

    def test_rolls_values_and_prices(self, db_session, open_period, admin, operator, kitchen, store, items, supplier):
        rice, oil = items
        delivery_service.create_delivery(
            location_id=kitchen.id,
            supplier_id=supplier.id,
            delivery_date=None,
            lines=[{"item_id": rice.id, "quantity": 5, "unit_price": "10.00"}],
            user=operator,
            invoice_no="INV-ROLL",
        )
        _ready_all(open_period, admin, kitchen, store)
        period_service.request_period_close(open_period.id, user=admin)
        closed = period_service.approve_period_close(open_period.id, user=admin)

        period, copied = period_service.roll_forward_period(closed.id, user=admin)

        assert period.status == period_service.PERIOD_STATUS_DRAFT
        assert period.start_date == closed.end_date + timedelta(days=1)
        assert copied == 2
        assert pricing_service.get_price_map(period.id, [rice.id, oil.id]) == {
            rice.id: Decimal("10.0000"),
            oil.id: Decimal("20.0000"),
        }
        opening = {pl.location_id: pl.opening_value for pl in period.period_locations}
        assert opening[kitchen.id] == Decimal("50.00")
        assert opening[store.id] == Decimal("0.00")

    def test_copy_prices_from_previous(self, db_session, open_period, admin, kitchen, store, items):
        rice, oil = items
        _ready_all(open_period, admin, kitchen, store)
        period_service.request_period_close(open_period.id, user=admin)
        closed = period_service.approve_period_close(open_period.id, user=admin)
        period, copied = period_service.roll_forward_period(closed.id, user=admin, copy_prices=False)
        assert copied == 0

        count, source = pricing_service.copy_prices_from_previous(period.id, user=admin)

        assert count == 2
        assert source.id == closed.id
        assert pricing_service.get_price_map(period.id, [rice.id, oil.id]) == {
            rice.id: Decimal("10.0000"),
            oil.id: Decimal("20.0000"),
        }

    def test_next_reconciliation_opens_from_close_snapshot(
        self, db_session, open_period, admin, operator, kitchen, store, items, supplier
    ):
        rice, _ = items
        for location in (kitchen, store):
            reconciliation_service.save_reconciliation(open_period.id, location.id, user=admin)

        # Stock received after the reconciliation was saved
        delivery_service.create_delivery(
            location_id=kitchen.id,
            supplier_id=supplier.id,
            delivery_date=None,
            lines=[{"item_id": rice.id, "quantity": 10, "unit_price": "10.00"}],
            user=operator,
            invoice_no="INV-LATE",
        )
        for location in (kitchen, store):
            period_service.mark_location_ready(open_period.id, location.id, user=admin)
        period_service.request_period_close(open_period.id, user=admin)
        closed = period_service.approve_period_close(open_period.id, user=admin)

        saved = reconciliation_service.get_or_build_reconciliation(closed.id, kitchen.id)
        assert saved["receipts"] == 100.0
        assert saved["closing_stock"] == 100.0

        period, _ = period_service.roll_forward_period(closed.id, user=admin)
        kitchen_pl = db_session.query(PeriodLocation).filter_by(period_id=period.id, location_id=kitchen.id).one()
        rec = reconciliation_service.get_or_build_reconciliation(period.id, kitchen.id)

        assert kitchen_pl.opening_value == Decimal("100.00")
        assert rec["opening_stock"] == 100.0


# =============================================================================
# API
# =============================================================================


class TestPeriodAPI:

    def test_current_period(self, client, open_period, supervisor_headers):
        resp = client.get("/api/periods/current", headers=supervisor_headers)
        assert resp.status_code == 200
        assert resp.json["period"]["id"] == open_period.id

    def test_prices_locked_maps_to_409(self, client, open_period, admin_headers, items):
        rice, _ = items
        resp = client.post(
            f"/api/periods/{open_period.id}/prices",
            json={"prices": [{"item_id": rice.id, "price": 12}]},
            headers=admin_headers,
        )
        assert resp.status_code == 409
        assert resp.json["code"] == "PRICES_LOCKED"

    def test_operator_cannot_create_period(self, client, db_session, operator_headers):
        start, end = current_month_dates()
        resp = client.post(
            "/api/periods",
            json={"name": "Nope", "start_date": start.isoformat(), "end_date": end.isoformat()},
            headers=operator_headers,
        )
        assert resp.status_code == 403
