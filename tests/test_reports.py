"""
Cross-location report tests.

Verifies:
- Consolidated stock groups balances per item with location and grand totals
- Consolidated reconciliation covers every location, saved or not, with
  grand totals and the average manday cost
- Only supervisors and administrators see either view
"""

from decimal import Decimal

import pytest

from stockms.services import (
    delivery_service,
    inventory_service,
    issue_service,
    pob_service,
    reconciliation_service,
)
from stockms.services.period_service import PeriodNotFoundError


@pytest.fixture
def two_locations_stocked(db_session, open_period, operator, supervisor, kitchen, store, items, supplier):
    """Kitchen: 10 rice @ 10.00 less 4 issued, min_stock 15. Store: 5 oil @ 20.00."""
    rice, oil = items
    delivery_service.create_delivery(
        location_id=kitchen.id,
        supplier_id=supplier.id,
        delivery_date=None,
        lines=[{"item_id": rice.id, "quantity": 10, "unit_price": "10.00"}],
        user=operator,
        invoice_no="INV-K1",
    )
    delivery_service.create_delivery(
        location_id=store.id,
        supplier_id=supplier.id,
        delivery_date=None,
        lines=[{"item_id": oil.id, "quantity": 5, "unit_price": "20.00"}],
        user=supervisor,
        invoice_no="INV-S1",
    )
    issue_service.create_issue(
        location_id=kitchen.id,
        cost_centre="FOOD",
        lines=[{"item_id": rice.id, "quantity": 4}],
        user=operator,
    )
    stock = inventory_service.get_stock(kitchen.id, rice.id)
    stock.min_stock = Decimal("15")
    db_session.commit()
    return kitchen, store


# =============================================================================
# CONSOLIDATED STOCK
# =============================================================================


class TestConsolidatedStock:

    def test_groups_by_item_with_totals(self, two_locations_stocked, items):
        kitchen, store = two_locations_stocked
        rice, oil = items

        report = inventory_service.consolidated_stock()

        assert [i["item_id"] for i in report["items"]] == [rice.id, oil.id]
        rice_entry = report["items"][0]
        assert rice_entry["total_on_hand"] == 6.0
        assert rice_entry["total_value"] == 60.0
        assert rice_entry["locations"][0]["id"] == kitchen.id
        assert rice_entry["locations"][0]["is_low_stock"] is True

        totals = {t["id"]: t for t in report["location_totals"]}
        assert totals[kitchen.id]["total_value"] == 60.0
        assert totals[store.id]["total_value"] == 100.0
        assert totals[store.id]["item_count"] == 1
        assert report["grand_total_value"] == 160.0
        assert report["total_locations"] == 2

    def test_low_stock_and_category_filters(self, two_locations_stocked, items):
        rice, _ = items

        low = inventory_service.consolidated_stock(low_stock=True)
        assert [i["item_id"] for i in low["items"]] == [rice.id]
        assert low["grand_total_value"] == 60.0

        assert inventory_service.consolidated_stock(category="FRESH")["items"] == []

    def test_inactive_items_are_left_out(self, two_locations_stocked, db_session, items):
        _, oil = items
        oil.is_active = False
        db_session.commit()

        report = inventory_service.consolidated_stock()
        assert oil.id not in {i["item_id"] for i in report["items"]}


# =============================================================================
# CONSOLIDATED RECONCILIATION
# =============================================================================


class TestConsolidatedReconciliation:

    def test_every_location_with_grand_totals(self, two_locations_stocked, open_period, operator, supervisor):
        kitchen, store = two_locations_stocked
        reconciliation_service.save_reconciliation(open_period.id, kitchen.id, user=supervisor)
        pob_service.save_pob_entries(
            kitchen.id,
            [{"date": open_period.start_date.isoformat(), "crew_count": 8, "extra_count": 2}],
            user=operator,
        )

        report = reconciliation_service.consolidated_reconciliation(open_period.id)

        assert [entry["location"]["id"] for entry in report["locations"]] == [kitchen.id, store.id]
        kitchen_rec = report["locations"][0]["reconciliation"]
        assert kitchen_rec["is_saved"] is True
        assert kitchen_rec["consumption"] == 40.0
        assert kitchen_rec["manday_cost"] == 4.0
        assert report["locations"][1]["reconciliation"]["is_saved"] is False

        totals = report["grand_totals"]
        assert totals["receipts"] == 200.0
        assert totals["closing_stock"] == 160.0
        assert totals["consumption"] == 40.0
        assert totals["total_mandays"] == 10
        assert totals["average_manday_cost"] == 4.0
        assert report["summary"] == {"total_locations": 2, "saved": 1, "auto_calculated": 1}

    def test_no_pob_means_no_average(self, two_locations_stocked, open_period):
        report = reconciliation_service.consolidated_reconciliation(open_period.id)
        assert report["grand_totals"]["average_manday_cost"] is None

    def test_unknown_period(self, db_session):
        with pytest.raises(PeriodNotFoundError):
            reconciliation_service.consolidated_reconciliation(999)


# =============================================================================
# API
# =============================================================================


class TestReportsAPI:

    def test_supervisor_sees_consolidated_stock(self, client, two_locations_stocked, supervisor_headers):
        resp = client.get("/api/stock/consolidated?low_stock=true", headers=supervisor_headers)
        assert resp.status_code == 200
        assert resp.json["total_items"] == 1

    def test_operator_denied(self, client, two_locations_stocked, open_period, operator_headers):
        assert client.get("/api/stock/consolidated", headers=operator_headers).status_code == 403
        resp = client.get(
            f"/api/reconciliations/consolidated?period_id={open_period.id}", headers=operator_headers,
        )
        assert resp.status_code == 403

    def test_reconciliation_needs_period(self, client, open_period, admin_headers):
        assert client.get("/api/reconciliations/consolidated", headers=admin_headers).status_code == 400

        resp = client.get(f"/api/reconciliations/consolidated?period_id={open_period.id}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["period"]["id"] == open_period.id

    def test_unknown_period_is_404(self, client, db_session, admin_headers):
        resp = client.get("/api/reconciliations/consolidated?period_id=999", headers=admin_headers)
        assert resp.status_code == 404
