"""
Issue and transfer tests.

Verifies:
- Issues take stock out at the current WAC and never go negative
- Shortfalls are summed per item and reported with details
- Transfers wait for approval, then move stock at the source WAC
- Only supervisors and administrators review transfers
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from stockms.services import (
    approval_service,
    delivery_service,
    inventory_service,
    issue_service,
    reconciliation_service,
    transfer_service,
)
from stockms.services.inventory_service import InsufficientStockError
from stockms.services.transfer_service import (
    TransferPermissionError,
    TransferStateError,
    TransferValidationError,
)
from stockms.validation import ValidationError


@pytest.fixture
def stocked_kitchen(db_session, open_period, operator, kitchen, items, supplier):
    """Kitchen holding 20 rice at WAC 11.00 (10 @ 10.00 then 10 @ 12.00)."""
    rice, _ = items
    for invoice_no, price in (("INV-A", "10.00"), ("INV-B", "12.00")):
        delivery_service.create_delivery(
            location_id=kitchen.id,
            supplier_id=supplier.id,
            delivery_date=None,
            lines=[{"item_id": rice.id, "quantity": 10, "unit_price": price}],
            user=operator,
            invoice_no=invoice_no,
        )
    return kitchen


# =============================================================================
# ISSUES
# =============================================================================


class TestIssues:

    def test_issue_values_at_wac(self, stocked_kitchen, operator, items):
        rice, _ = items
        issue = issue_service.create_issue(
            location_id=stocked_kitchen.id,
            cost_centre="FOOD",
            lines=[{"item_id": rice.id, "quantity": 4}],
            user=operator,
        )

        assert issue.issue_no.startswith("ISS-")
        assert issue.total_value == Decimal("44.00")
        stock = inventory_service.get_stock(stocked_kitchen.id, rice.id)
        assert stock.on_hand == Decimal("16")
        assert stock.wac == Decimal("11.0000")

    def test_insufficient_stock_rejects_whole_issue(self, stocked_kitchen, operator, items):
        rice, oil = items
        with pytest.raises(InsufficientStockError) as exc:
            issue_service.create_issue(
                location_id=stocked_kitchen.id,
                cost_centre="FOOD",
                lines=[
                    {"item_id": rice.id, "quantity": 5},
                    {"item_id": oil.id, "quantity": 1},
                ],
                user=operator,
            )
        assert exc.value.code == "INSUFFICIENT_STOCK"
        assert [d["item_id"] for d in exc.value.details] == [oil.id]
        assert inventory_service.get_stock(stocked_kitchen.id, rice.id).on_hand == Decimal("20")

    def test_shortfall_sums_lines_for_same_item(self, stocked_kitchen, items):
        rice, _ = items
        shortfalls = inventory_service.check_stock_sufficiency(
            stocked_kitchen.id,
            [{"item_id": rice.id, "quantity": 12}, {"item_id": rice.id, "quantity": 12}],
        )
        assert shortfalls[0]["requested"] == 24.0
        assert shortfalls[0]["shortfall"] == 4.0

    def test_apply_issue_never_goes_negative(self, stocked_kitchen, items):
        rice, _ = items
        with pytest.raises(InsufficientStockError) as exc:
            inventory_service.apply_issue(stocked_kitchen.id, rice.id, 21)
        assert exc.value.details[0]["available"] == 20.0

    def test_unknown_cost_centre(self, stocked_kitchen, operator, items):
        rice, _ = items
        with pytest.raises(ValidationError) as exc:
            issue_service.create_issue(
                location_id=stocked_kitchen.id,
                cost_centre="BAR",
                lines=[{"item_id": rice.id, "quantity": 1}],
                user=operator,
            )
        assert "cost_centre" in str(exc.value)

    def test_issue_api_reports_shortfall(self, client, stocked_kitchen, operator_headers, items):
        rice, _ = items
        resp = client.post(
            f"/api/locations/{stocked_kitchen.id}/issues",
            json={"cost_centre": "FOOD", "lines": [{"item_id": rice.id, "quantity": 50}]},
            headers=operator_headers,
        )
        assert resp.status_code == 409
        assert resp.json["code"] == "INSUFFICIENT_STOCK"
        assert resp.json["details"][0]["shortfall"] == 30.0


# =============================================================================
# TRANSFERS
# =============================================================================


class TestTransfers:

    def _request(self, operator, source, destination, item, quantity=5):
        return transfer_service.create_transfer(
            from_location_id=source.id,
            to_location_id=destination.id,
            lines=[{"item_id": item.id, "quantity": quantity}],
            user=operator,
        )

    def test_request_waits_for_approval(self, stocked_kitchen, store, operator, items):
        rice, _ = items
        transfer = self._request(operator, stocked_kitchen, store, rice)

        assert transfer.status == transfer_service.TRANSFER_STATUS_PENDING_APPROVAL
        assert transfer.transfer_no.startswith("TRF-")
        assert transfer.total_value == Decimal("55.00")
        assert inventory_service.get_stock(stocked_kitchen.id, rice.id).on_hand == Decimal("20")

        approval = approval_service.get_approval_for(approval_service.ENTITY_TRANSFER, transfer.id)
        assert approval.status == approval_service.STATUS_PENDING

    def test_approval_moves_stock_at_source_wac(self, stocked_kitchen, store, operator, supervisor, items):
        rice, _ = items
        transfer = self._request(operator, stocked_kitchen, store, rice)

        transfer = transfer_service.approve_transfer(transfer.id, user=supervisor)

        assert transfer.status == transfer_service.TRANSFER_STATUS_COMPLETED
        assert inventory_service.get_stock(stocked_kitchen.id, rice.id).on_hand == Decimal("15")
        destination = inventory_service.get_stock(store.id, rice.id)
        assert destination.on_hand == Decimal("5")
        assert destination.wac == Decimal("11.0000")

    def test_approval_through_approvals_queue(self, stocked_kitchen, store, operator, supervisor, items):
        rice, _ = items
        transfer = self._request(operator, stocked_kitchen, store, rice)
        approval = approval_service.get_approval_for(approval_service.ENTITY_TRANSFER, transfer.id)

        approval = approval_service.approve(approval.id, user=supervisor, comments="ok")

        assert approval.status == approval_service.STATUS_APPROVED
        assert transfer_service.get_transfer(transfer.id).status == transfer_service.TRANSFER_STATUS_COMPLETED

    def test_operator_cannot_approve(self, stocked_kitchen, store, operator, items):
        rice, _ = items
        transfer = self._request(operator, stocked_kitchen, store, rice)
        with pytest.raises(TransferPermissionError):
            transfer_service.approve_transfer(transfer.id, user=operator)

    def test_rejection_needs_reason_and_moves_nothing(self, stocked_kitchen, store, operator, supervisor, items):
        rice, _ = items
        transfer = self._request(operator, stocked_kitchen, store, rice)

        with pytest.raises(TransferValidationError):
            transfer_service.reject_transfer(transfer.id, user=supervisor, reason="  ")

        transfer = transfer_service.reject_transfer(transfer.id, user=supervisor, reason="Not needed")
        assert transfer.status == transfer_service.TRANSFER_STATUS_REJECTED
        assert inventory_service.get_stock(store.id, rice.id) is None

        with pytest.raises(TransferStateError) as exc:
            transfer_service.approve_transfer(transfer.id, user=supervisor)
        assert exc.value.code == "NOT_PENDING"

    def test_same_location_rejected(self, stocked_kitchen, operator, items):
        rice, _ = items
        with pytest.raises(TransferValidationError) as exc:
            self._request(operator, stocked_kitchen, stocked_kitchen, rice)
        assert exc.value.code == "SAME_LOCATION"

    def test_insufficient_source_stock(self, stocked_kitchen, store, operator, items):
        rice, _ = items
        with pytest.raises(InsufficientStockError):
            self._request(operator, stocked_kitchen, store, rice, quantity=25)

    def test_approval_rechecks_source_stock(self, stocked_kitchen, store, operator, supervisor, items):
        rice, _ = items
        transfer = self._request(operator, stocked_kitchen, store, rice, quantity=15)
        issue_service.create_issue(
            location_id=stocked_kitchen.id,
            cost_centre="FOOD",
            lines=[{"item_id": rice.id, "quantity": 10}],
            user=operator,
        )

        with pytest.raises(InsufficientStockError):
            transfer_service.approve_transfer(transfer.id, user=supervisor)

        assert inventory_service.get_stock(stocked_kitchen.id, rice.id).on_hand == Decimal("10")
        assert inventory_service.get_stock(store.id, rice.id) is None
        transfer = transfer_service.get_transfer(transfer.id)
        assert transfer.status == transfer_service.TRANSFER_STATUS_PENDING_APPROVAL

    def test_destination_wac_blends_with_existing_stock(
        self, stocked_kitchen, store, operator, supervisor, items, supplier
    ):
        rice, _ = items
        delivery_service.create_delivery(
            location_id=store.id,
            supplier_id=supplier.id,
            delivery_date=None,
            lines=[{"item_id": rice.id, "quantity": 5, "unit_price": "14.00"}],
            user=supervisor,
            invoice_no="INV-STORE",
        )
        transfer = self._request(operator, stocked_kitchen, store, rice)

        transfer_service.approve_transfer(transfer.id, user=supervisor)

        destination = inventory_service.get_stock(store.id, rice.id)
        assert destination.on_hand == Decimal("10")
        assert destination.wac == Decimal("12.5000")
        assert inventory_service.get_stock(stocked_kitchen.id, rice.id).wac == Decimal("11.0000")

    def test_transfer_counted_in_period_it_was_approved(
        self, db_session, stocked_kitchen, store, operator, supervisor, items, open_period
    ):
        rice, _ = items
        transfer = self._request(operator, stocked_kitchen, store, rice)
        transfer = transfer_service.approve_transfer(transfer.id, user=supervisor)
        assert transfer.period_id == open_period.id

        # Approved after the calendar end while the period was still OPEN
        transfer.transfer_date = open_period.end_date + timedelta(days=2)
        db_session.commit()

        source = reconciliation_service.get_or_build_reconciliation(open_period.id, stocked_kitchen.id)
        destination = reconciliation_service.get_or_build_reconciliation(open_period.id, store.id)
        assert source["transfers_out"] == 55.0
        assert destination["transfers_in"] == 55.0
