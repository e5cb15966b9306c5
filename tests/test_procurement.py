"""
Procurement workflow tests (PRF -> approval -> PO -> close).

Verifies:
- PRF numbering per location and day, requester-only submit
- Only supervisors and administrators review; rejection needs a reason
- POs need an APPROVED PRF, one PO per PRF, VAT and discount totals
- Closing a PO with unfulfilled lines needs a reason
"""

from decimal import Decimal

import pytest

from stockms.services import approval_service, po_service, prf_service
from stockms.services.po_service import POPermissionError, POStateError, POValidationError
from stockms.services.prf_service import (
    PRFNotFoundError,
    PRFPermissionError,
    PRFStateError,
    PRFValidationError,
)
from stockms.time_utils import format_document_date


def _prf(user, location, item, quantity=10):
    return prf_service.create_prf(
        location_id=location.id,
        lines=[{"item_id": item.id, "required_qty": quantity, "estimated_price": "10.00"}],
        user=user,
        prf_type="NORMAL",
        category="MATERIAL",
    )


def _approved_prf(operator, supervisor, location, item):
    prf = _prf(operator, location, item)
    prf_service.submit_prf(prf.id, user=operator)
    return prf_service.approve_prf(prf.id, user=supervisor)


# =============================================================================
# PRF
# =============================================================================


class TestPRF:

    def test_create_numbers_per_location_and_day(self, db_session, open_period, operator, kitchen, items):
        rice, _ = items
        first = _prf(operator, kitchen, rice)
        second = _prf(operator, kitchen, rice)

        stamp = format_document_date()
        assert first.prf_no == f"PRF-MAIN-KITCHEN-{stamp}-01"
        assert second.prf_no == f"PRF-MAIN-KITCHEN-{stamp}-02"
        assert first.status == prf_service.STATUS_DRAFT
        assert first.total_value == Decimal("100.00")
        assert first.lines[0].item_description == "Basmati Rice"
        assert first.lines[0].unit == "KG"

    def test_only_requester_submits(self, db_session, open_period, operator, supervisor, kitchen, items):
        rice, _ = items
        prf = _prf(operator, kitchen, rice)
        with pytest.raises(PRFPermissionError):
            prf_service.submit_prf(prf.id, user=supervisor)

        prf = prf_service.submit_prf(prf.id, user=operator)
        assert prf.status == prf_service.STATUS_PENDING
        approval = approval_service.get_approval_for(approval_service.ENTITY_PRF, prf.id)
        assert approval.status == approval_service.STATUS_PENDING

    def test_operator_cannot_approve(self, db_session, open_period, operator, kitchen, items):
        rice, _ = items
        prf = _prf(operator, kitchen, rice)
        prf_service.submit_prf(prf.id, user=operator)
        with pytest.raises(PRFPermissionError):
            prf_service.approve_prf(prf.id, user=operator)

    def test_rejection_needs_reason(self, db_session, open_period, operator, supervisor, kitchen, items):
        rice, _ = items
        prf = _prf(operator, kitchen, rice)
        prf_service.submit_prf(prf.id, user=operator)

        with pytest.raises(PRFValidationError):
            prf_service.reject_prf(prf.id, user=supervisor, reason="")

        prf = prf_service.reject_prf(prf.id, user=supervisor, reason="Over budget")
        assert prf.status == prf_service.STATUS_REJECTED
        assert prf.rejection_reason == "Over budget"

    def test_clone_creates_new_draft(self, db_session, open_period, operator, supervisor, kitchen, items):
        rice, _ = items
        source = _approved_prf(operator, supervisor, kitchen, rice)

        clone = prf_service.clone_prf(source.id, user=operator)

        assert clone.id != source.id
        assert clone.status == prf_service.STATUS_DRAFT
        assert len(clone.lines) == 1
        assert clone.lines[0].required_qty == Decimal("10")

    def test_approved_prf_cannot_be_edited(self, db_session, open_period, operator, supervisor, kitchen, items):
        rice, _ = items
        prf = _approved_prf(operator, supervisor, kitchen, rice)
        with pytest.raises(PRFStateError):
            prf_service.update_prf(prf.id, user=operator, notes="late change")

    def test_only_draft_prf_can_be_deleted(self, db_session, open_period, operator, kitchen, items):
        rice, _ = items
        submitted = _prf(operator, kitchen, rice)
        prf_service.submit_prf(submitted.id, user=operator)
        with pytest.raises(PRFStateError) as exc:
            prf_service.delete_prf(submitted.id, user=operator)
        assert exc.value.code == "NOT_DRAFT"
        assert prf_service.get_prf(submitted.id).status == prf_service.STATUS_PENDING

        draft = _prf(operator, kitchen, rice)
        draft_id = draft.id
        prf_service.delete_prf(draft_id, user=operator)
        with pytest.raises(PRFNotFoundError):
            prf_service.get_prf(draft_id)


# =============================================================================
# PURCHASE ORDERS
# =============================================================================


class TestPurchaseOrders:

    def test_po_requires_approved_prf(self, db_session, open_period, operator, procurement, kitchen, items, supplier):
        rice, _ = items
        prf = _prf(operator, kitchen, rice)
        with pytest.raises(POStateError) as exc:
            po_service.create_po(
                prf_id=prf.id,
                supplier_id=supplier.id,
                lines=[{"item_id": rice.id, "quantity": 10, "unit_price": 10}],
                user=procurement,
            )
        assert exc.value.code == "PRF_NOT_APPROVED"

    def test_po_totals_and_single_po_per_prf(
        self, db_session, open_period, operator, supervisor, procurement, kitchen, items, supplier
    ):
        rice, _ = items
        prf = _approved_prf(operator, supervisor, kitchen, rice)

        po = po_service.create_po(
            prf_id=prf.id,
            supplier_id=supplier.id,
            lines=[{"item_id": rice.id, "quantity": 10, "unit_price": "25.00", "discount_percent": 10}],
            user=procurement,
        )
        assert po.po_no.startswith("PO-MAIN-KITCHEN-")
        assert po.status == po_service.STATUS_OPEN
        assert po.total_before_discount == Decimal("250.00")
        assert po.total_discount == Decimal("25.00")
        assert po.total_vat == Decimal("33.75")
        assert po.total_amount == Decimal("258.75")
        assert po.lines[0].item_code == "RICE-01"

        with pytest.raises(POStateError) as exc:
            po_service.create_po(
                prf_id=prf.id,
                supplier_id=supplier.id,
                lines=[{"item_id": rice.id, "quantity": 1, "unit_price": 1}],
                user=procurement,
            )
        assert exc.value.code == "PRF_HAS_PO"

    def test_close_with_unfulfilled_lines_needs_reason(
        self, db_session, open_period, operator, supervisor, procurement, kitchen, items, supplier
    ):
        rice, _ = items
        prf = _approved_prf(operator, supervisor, kitchen, rice)
        po = po_service.create_po(
            prf_id=prf.id,
            supplier_id=supplier.id,
            lines=[{"item_id": rice.id, "quantity": 10, "unit_price": 10}],
            user=procurement,
        )

        with pytest.raises(POPermissionError):
            po_service.close_po(po.id, user=procurement, closure_reason="Cancelled")

        with pytest.raises(POValidationError) as exc:
            po_service.close_po(po.id, user=supervisor)
        assert exc.value.code == "CLOSURE_REASON_REQUIRED"
        assert exc.value.details["fulfillment_percent"] == 0

        po = po_service.close_po(po.id, user=supervisor, closure_reason="Supplier discontinued item")
        assert po.status == po_service.STATUS_CLOSED
        assert "[Closed with 0% fulfilled] Supplier discontinued item" in po.notes
        assert po.prf.status == prf_service.STATUS_CLOSED

        with pytest.raises(POStateError) as exc:
            po_service.close_po(po.id, user=supervisor, closure_reason="again")
        assert exc.value.code == "PO_ALREADY_CLOSED"


# =============================================================================
# API
# =============================================================================


class TestProcurementAPI:

    def test_prf_create_and_submit(self, client, open_period, operator_headers, kitchen, items):
        rice, _ = items
        resp = client.post(
            "/api/prfs",
            json={
                "location_id": kitchen.id,
                "prf_type": "URGENT",
                "category": "CONSUMABLES",
                "lines": [{"item_id": rice.id, "required_qty": 5, "estimated_price": 9.5}],
            },
            headers=operator_headers,
        )
        assert resp.status_code == 201, resp.json
        prf_id = resp.json["id"]
        assert resp.json["status"] == "DRAFT"

        resp = client.post(f"/api/prfs/{prf_id}/submit", headers=operator_headers)
        assert resp.status_code == 200
        assert resp.json["status"] == "PENDING"

    def test_operator_cannot_raise_po(self, client, open_period, operator_headers, supplier):
        resp = client.post(
            "/api/pos",
            json={"prf_id": 1, "supplier_id": supplier.id, "lines": []},
            headers=operator_headers,
        )
        assert resp.status_code == 403
