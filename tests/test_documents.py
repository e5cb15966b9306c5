"""
Document numbering and ledger tests.
"""

from datetime import date

import pytest

from stockms.models import LedgerEvent
from stockms.services import delivery_service, document_service, ledger_service
from stockms.services.delivery_service import DeliveryValidationError
from stockms.services.document_service import DocumentSequenceError


class TestDocumentNumbers:

    def test_yearly_sequence(self, db_session):
        on = date(2026, 3, 5)
        assert document_service.next_yearly_number("DELIVERY", "DEL", on) == "DEL-2026-001"
        assert document_service.next_yearly_number("DELIVERY", "DEL", on) == "DEL-2026-002"
        assert document_service.next_yearly_number("ISSUE", "ISS", on) == "ISS-2026-001"
        assert document_service.next_yearly_number("DELIVERY", "DEL", date(2027, 1, 1)) == "DEL-2027-001"

    def test_location_sequence_per_day(self, db_session, kitchen):
        on = date(2026, 3, 5)
        assert document_service.next_location_number("PRF", "PRF", kitchen.id, on) == "PRF-MAIN-KITCHEN-05-Mar-2026-01"
        assert document_service.next_location_number("PRF", "PRF", kitchen.id, on) == "PRF-MAIN-KITCHEN-05-Mar-2026-02"
        assert (
            document_service.next_location_number("PRF", "PRF", kitchen.id, date(2026, 3, 6))
            == "PRF-MAIN-KITCHEN-06-Mar-2026-01"
        )

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("Main Kitchen", "MAIN-KITCHEN"),
            ("  camp #2 store ", "CAMP-2-STORE"),
            ("A very long location name indeed", "A-VERY-LONG-LOCATION"),
        ],
    )
    def test_sanitize_location_name(self, name, expected):
        assert document_service.sanitize_location_name(name) == expected

    def test_scope_required(self, db_session):
        with pytest.raises(DocumentSequenceError):
            document_service.next_document_number(document_type="DELIVERY", scope="", prefix="DEL")


class TestLedger:

    def test_delivery_posting_is_audited(self, db_session, open_period, operator, kitchen, items, supplier):
        rice, _ = items
        delivery = delivery_service.create_delivery(
            location_id=kitchen.id,
            supplier_id=supplier.id,
            delivery_date=None,
            lines=[{"item_id": rice.id, "quantity": 1, "unit_price": "10.00"}],
            user=operator,
            invoice_no="INV-LEDGER",
        )

        events, total = ledger_service.list_ledger_events(entity_type="delivery", entity_id=delivery.id)
        assert total == 1
        assert events[0].event_type == "delivery.posted"
        assert events[0].actor_user_id == operator.id

    def test_failed_operation_leaves_no_events(self, db_session, open_period, operator, kitchen, items, supplier):
        rice, _ = items
        before = db_session.query(LedgerEvent).count()
        with pytest.raises(DeliveryValidationError):
            delivery_service.create_delivery(
                location_id=kitchen.id,
                supplier_id=supplier.id,
                delivery_date=None,
                lines=[{"item_id": rice.id, "quantity": 1, "unit_price": "10.00"}],
                user=operator,
                invoice_no=None,
            )
        assert db_session.query(LedgerEvent).count() == before

    def test_location_scoped_listing(self, client, open_period, supervisor_headers, kitchen):
        resp = client.get(f"/api/ledger?location_id={kitchen.id}", headers=supervisor_headers)
        assert resp.status_code == 200
