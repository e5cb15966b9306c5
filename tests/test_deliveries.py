"""
Delivery posting tests.

Verifies:
- Posting receives stock and recalculates WAC
- A price off the period-locked price raises an automatic NCR
- Missing period prices, duplicate invoices and no open period are rejected
- PO-linked deliveries track fulfilment, refuse unapproved over-delivery
  and auto-close the PO when fully delivered
"""

from decimal import Decimal

import pytest

from stockms.extensions import db
from stockms.models import Delivery, Item
from stockms.services import (
    delivery_service,
    inventory_service,
    ncr_service,
    po_service,
    prf_service,
)
from stockms.services.delivery_service import DeliveryStateError, DeliveryValidationError
from stockms.services.po_service import POStateError
from stockms.services.period_service import PeriodStateError
from stockms.validation import AccessDeniedError


def _deliver(user, location, supplier, lines, invoice_no="INV-1", **kwargs):
    return delivery_service.create_delivery(
        location_id=location.id,
        supplier_id=supplier.id,
        delivery_date=None,
        lines=lines,
        user=user,
        invoice_no=invoice_no,
        **kwargs,
    )


def _approved_po(operator, supervisor, procurement, kitchen, supplier, item, quantity=10):
    prf = prf_service.create_prf(
        location_id=kitchen.id,
        lines=[{"item_id": item.id, "required_qty": quantity, "estimated_price": 10}],
        user=operator,
    )
    prf_service.submit_prf(prf.id, user=operator)
    prf_service.approve_prf(prf.id, user=supervisor)
    return po_service.create_po(
        prf_id=prf.id,
        supplier_id=supplier.id,
        lines=[{"item_id": item.id, "quantity": quantity, "unit_price": "10.00"}],
        user=procurement,
    )


# =============================================================================
# STOCK AND WAC
# =============================================================================


class TestDeliveryPosting:

    def test_first_delivery_sets_stock_and_wac(self, db_session, open_period, operator, kitchen, items, supplier):
        rice, _ = items
        delivery = _deliver(operator, kitchen, supplier, [{"item_id": rice.id, "quantity": 10, "unit_price": "10.00"}])

        assert delivery.status == delivery_service.STATUS_POSTED
        assert delivery.delivery_no.startswith("DEL-")
        assert delivery.delivery_no.endswith("-001")
        assert delivery.total_amount == Decimal("100.00")
        assert delivery.has_variance is False

        stock = inventory_service.get_stock(kitchen.id, rice.id)
        assert stock.on_hand == Decimal("10")
        assert stock.wac == Decimal("10.0000")

    def test_second_delivery_recalculates_wac(self, db_session, open_period, operator, kitchen, items, supplier):
        rice, _ = items
        _deliver(operator, kitchen, supplier, [{"item_id": rice.id, "quantity": 10, "unit_price": "10.00"}])
        delivery = _deliver(
            operator, kitchen, supplier,
            [{"item_id": rice.id, "quantity": 10, "unit_price": "12.00"}],
            invoice_no="INV-2",
        )

        line = delivery.lines[0]
        assert line.wac_before == Decimal("10.0000")
        assert line.wac_after == Decimal("11.0000")
        assert inventory_service.get_stock(kitchen.id, rice.id).on_hand == Decimal("20")

    def test_price_variance_raises_ncr(self, db_session, open_period, operator, kitchen, items, supplier):
        rice, _ = items
        delivery = _deliver(operator, kitchen, supplier, [{"item_id": rice.id, "quantity": 5, "unit_price": "11.00"}])

        assert delivery.has_variance is True
        assert len(delivery.ncrs) == 1
        ncr = delivery.ncrs[0]
        assert ncr.type == ncr_service.TYPE_PRICE_VARIANCE
        assert ncr.auto_generated is True
        assert ncr.status == ncr_service.STATUS_OPEN
        assert ncr.value == Decimal("5.00")
        assert ncr.ncr_no.endswith("-001")

    def test_variance_inside_threshold_raises_no_ncr(self, app, db_session, open_period, operator, kitchen, items, supplier):
        rice, _ = items
        app.config["NCR_VARIANCE_THRESHOLD_PERCENT"] = 20
        try:
            delivery = _deliver(operator, kitchen, supplier, [{"item_id": rice.id, "quantity": 5, "unit_price": "11.00"}])
        finally:
            app.config["NCR_VARIANCE_THRESHOLD_PERCENT"] = 0
        assert delivery.has_variance is False
        assert delivery.lines[0].price_variance == Decimal("1.0000")

    def test_draft_delivery_moves_no_stock(self, db_session, open_period, operator, kitchen, items, supplier):
        rice, _ = items
        delivery = _deliver(
            operator, kitchen, supplier,
            [{"item_id": rice.id, "quantity": 4, "unit_price": "10.00"}],
            invoice_no=None,
            status=delivery_service.STATUS_DRAFT,
        )
        assert delivery.status == delivery_service.STATUS_DRAFT
        assert inventory_service.get_stock(kitchen.id, rice.id) is None

        with pytest.raises(DeliveryValidationError) as exc:
            delivery_service.post_delivery(delivery.id, user=operator)
        assert exc.value.code == "INVOICE_REQUIRED"

    def test_draft_with_invoice_posts_later(self, db_session, open_period, operator, kitchen, items, supplier):
        rice, _ = items
        delivery = _deliver(
            operator, kitchen, supplier,
            [{"item_id": rice.id, "quantity": 4, "unit_price": "10.00"}],
            invoice_no="INV-DRAFT",
            status=delivery_service.STATUS_DRAFT,
        )

        delivery = delivery_service.post_delivery(delivery.id, user=operator)

        assert delivery.status == delivery_service.STATUS_POSTED
        stock = inventory_service.get_stock(kitchen.id, rice.id)
        assert stock.on_hand == Decimal("4")
        assert stock.wac == Decimal("10.0000")

        with pytest.raises(DeliveryStateError) as exc:
            delivery_service.post_delivery(delivery.id, user=operator)
        assert exc.value.code == "ALREADY_POSTED"


# =============================================================================
# REJECTIONS
# =============================================================================


class TestDeliveryRejections:

    def test_missing_period_price(self, db_session, open_period, operator, kitchen, supplier):
        unpriced = Item(code="SALT-01", name="Table Salt", unit="KG")
        db_session.add(unpriced)
        db_session.commit()

        with pytest.raises(DeliveryValidationError) as exc:
            _deliver(operator, kitchen, supplier, [{"item_id": unpriced.id, "quantity": 1, "unit_price": "1.00"}])
        assert exc.value.code == "MISSING_PERIOD_PRICES"
        assert exc.value.details[0]["item_code"] == "SALT-01"

    def test_duplicate_invoice(self, db_session, open_period, operator, kitchen, items, supplier):
        rice, _ = items
        _deliver(operator, kitchen, supplier, [{"item_id": rice.id, "quantity": 1, "unit_price": "10.00"}])
        with pytest.raises(DeliveryStateError) as exc:
            _deliver(operator, kitchen, supplier, [{"item_id": rice.id, "quantity": 1, "unit_price": "10.00"}])
        assert exc.value.code == "DUPLICATE_INVOICE"

    def test_duplicate_items_on_one_delivery(self, db_session, open_period, operator, kitchen, items, supplier):
        rice, _ = items
        line = {"item_id": rice.id, "quantity": 1, "unit_price": "10.00"}
        with pytest.raises(DeliveryValidationError) as exc:
            _deliver(operator, kitchen, supplier, [line, dict(line)])
        assert exc.value.code == "DUPLICATE_ITEMS"

    def test_no_open_period(self, db_session, operator, kitchen, items, supplier):
        rice, _ = items
        with pytest.raises(PeriodStateError) as exc:
            _deliver(operator, kitchen, supplier, [{"item_id": rice.id, "quantity": 1, "unit_price": "10.00"}])
        assert exc.value.code == "NO_OPEN_PERIOD"

    def test_operator_cannot_post_at_unassigned_location(self, db_session, open_period, operator, store, items, supplier):
        rice, _ = items
        with pytest.raises(AccessDeniedError):
            _deliver(operator, store, supplier, [{"item_id": rice.id, "quantity": 1, "unit_price": "10.00"}])

    def test_failed_posting_leaves_no_stock(self, db_session, open_period, operator, kitchen, items, supplier):
        rice, _ = items
        unpriced = Item(code="FLOUR-01", name="Flour", unit="KG")
        db_session.add(unpriced)
        db_session.commit()

        with pytest.raises(DeliveryValidationError):
            _deliver(operator, kitchen, supplier, [
                {"item_id": rice.id, "quantity": 3, "unit_price": "10.00"},
                {"item_id": unpriced.id, "quantity": 3, "unit_price": "1.00"},
            ])
        assert inventory_service.get_stock(kitchen.id, rice.id) is None

    def test_only_drafts_can_be_deleted(self, db_session, open_period, operator, kitchen, items, supplier):
        rice, _ = items
        posted = _deliver(operator, kitchen, supplier, [{"item_id": rice.id, "quantity": 1, "unit_price": "10.00"}])
        with pytest.raises(DeliveryStateError) as exc:
            delivery_service.delete_delivery(posted.id, user=operator)
        assert exc.value.code == "DELIVERY_POSTED"

        draft = _deliver(
            operator, kitchen, supplier,
            [{"item_id": rice.id, "quantity": 1, "unit_price": "10.00"}],
            invoice_no=None,
            status=delivery_service.STATUS_DRAFT,
        )
        delivery_service.delete_delivery(draft.id, user=operator)
        assert db_session.get(Delivery, draft.id) is None


# =============================================================================
# PURCHASE ORDER LINKAGE
# =============================================================================


class TestPOLinkedDelivery:

    def test_partial_delivery_keeps_po_open(
        self, db_session, open_period, operator, supervisor, procurement, kitchen, items, supplier
    ):
        rice, _ = items
        po = _approved_po(operator, supervisor, procurement, kitchen, supplier, rice)

        _deliver(operator, kitchen, supplier, [{"item_id": rice.id, "quantity": 4, "unit_price": "10.00"}], po_id=po.id)

        db.session.refresh(po)
        assert po.status == po_service.STATUS_OPEN
        assert po_service.fulfillment_percent(po) == 40
        assert po.lines[0].delivered_qty == Decimal("4")

    def test_full_delivery_auto_closes_po_and_prf(
        self, db_session, open_period, operator, supervisor, procurement, kitchen, items, supplier
    ):
        rice, _ = items
        po = _approved_po(operator, supervisor, procurement, kitchen, supplier, rice)

        _deliver(operator, kitchen, supplier, [{"item_id": rice.id, "quantity": 10, "unit_price": "10.00"}], po_id=po.id)

        db.session.refresh(po)
        assert po.status == po_service.STATUS_CLOSED
        assert po.prf.status == prf_service.STATUS_CLOSED

    def test_over_delivery_needs_approval(
        self, db_session, open_period, operator, supervisor, procurement, kitchen, items, supplier
    ):
        rice, _ = items
        po = _approved_po(operator, supervisor, procurement, kitchen, supplier, rice)

        with pytest.raises(DeliveryValidationError) as exc:
            _deliver(operator, kitchen, supplier, [{"item_id": rice.id, "quantity": 12, "unit_price": "10.00"}], po_id=po.id)
        assert exc.value.code == "OVER_DELIVERY_NOT_APPROVED"
        assert exc.value.details[0]["excess"] == 2.0

        delivery = _deliver(
            operator, kitchen, supplier,
            [{"item_id": rice.id, "quantity": 12, "unit_price": "10.00", "over_delivery_approved": True}],
            po_id=po.id,
        )
        assert delivery.lines[0].over_delivery_approved is True

    def test_closed_po_rejects_delivery(
        self, db_session, open_period, operator, supervisor, procurement, kitchen, items, supplier
    ):
        rice, _ = items
        po = _approved_po(operator, supervisor, procurement, kitchen, supplier, rice)
        po_service.close_po(po.id, user=supervisor, closure_reason="Supplier out of stock")

        with pytest.raises(DeliveryStateError) as exc:
            _deliver(operator, kitchen, supplier, [{"item_id": rice.id, "quantity": 1, "unit_price": "10.00"}], po_id=po.id)
        assert exc.value.code == "PO_CLOSED"

    def test_po_line_on_draft_delivery_cannot_be_removed(
        self, db_session, open_period, operator, supervisor, procurement, kitchen, items, supplier
    ):
        rice, oil = items
        po = _approved_po(operator, supervisor, procurement, kitchen, supplier, rice)
        _deliver(
            operator, kitchen, supplier,
            [{"item_id": rice.id, "quantity": 2, "unit_price": "10.00"}],
            invoice_no=None,
            status=delivery_service.STATUS_DRAFT,
            po_id=po.id,
        )

        with pytest.raises(POStateError) as exc:
            po_service.update_po(
                po.id,
                user=procurement,
                lines=[{"item_id": oil.id, "quantity": 5, "unit_price": "20.00"}],
            )
        assert exc.value.code == "LINE_HAS_DELIVERIES"

        db.session.refresh(po)
        assert [line.item_id for line in po.lines] == [rice.id]


# =============================================================================
# API
# =============================================================================


class TestDeliveryAPI:

    def test_post_delivery_returns_ncrs(self, client, open_period, operator_headers, kitchen, items, supplier):
        rice, oil = items
        resp = client.post(
            f"/api/locations/{kitchen.id}/deliveries",
            json={
                "supplier_id": supplier.id,
                "invoice_no": "INV-API-1",
                "lines": [
                    {"item_id": rice.id, "quantity": 10, "unit_price": 10},
                    {"item_id": oil.id, "quantity": 2, "unit_price": 25},
                ],
            },
            headers=operator_headers,
        )
        assert resp.status_code == 201, resp.json
        assert resp.json["total_amount"] == 150.0
        assert len(resp.json["lines"]) == 2
        assert len(resp.json["ncrs"]) == 1
        assert resp.json["ncrs"][0]["item_id"] == oil.id

    def test_missing_prices_maps_to_400(self, client, db_session, open_period, operator_headers, kitchen, supplier):
        unpriced = Item(code="SUGAR-01", name="Sugar", unit="KG")
        db_session.add(unpriced)
        db_session.commit()

        resp = client.post(
            f"/api/locations/{kitchen.id}/deliveries",
            json={
                "supplier_id": supplier.id,
                "invoice_no": "INV-API-2",
                "lines": [{"item_id": unpriced.id, "quantity": 1, "unit_price": 1}],
            },
            headers=operator_headers,
        )
        assert resp.status_code == 400
        assert resp.json["code"] == "MISSING_PERIOD_PRICES"

    def test_unassigned_location_forbidden(self, client, open_period, operator_headers, store, items, supplier):
        rice, _ = items
        resp = client.post(
            f"/api/locations/{store.id}/deliveries",
            json={
                "supplier_id": supplier.id,
                "invoice_no": "INV-API-3",
                "lines": [{"item_id": rice.id, "quantity": 1, "unit_price": 10}],
            },
            headers=operator_headers,
        )
        assert resp.status_code == 403
