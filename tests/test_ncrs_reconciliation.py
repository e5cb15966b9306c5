"""
NCR lifecycle, period NCR summary, POB and reconciliation tests.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from stockms.services import (
    delivery_service,
    issue_service,
    ncr_service,
    period_service,
    pob_service,
    reconciliation_service,
)
from stockms.services.ncr_service import NCRStateError, NCRValidationError
from stockms.services.pob_service import POBStateError, POBValidationError
from stockms.services.reconciliation_service import ReconciliationPermissionError


@pytest.fixture
def variance_delivery(db_session, open_period, operator, kitchen, items, supplier):
    """Oil delivered at 25.00 against a locked 20.00: one automatic NCR worth 10.00."""
    _, oil = items
    return delivery_service.create_delivery(
        location_id=kitchen.id,
        supplier_id=supplier.id,
        delivery_date=None,
        lines=[{"item_id": oil.id, "quantity": 2, "unit_price": "25.00"}],
        user=operator,
        invoice_no="INV-NCR",
    )


# =============================================================================
# NCR LIFECYCLE
# =============================================================================


class TestNCRLifecycle:

    def test_manual_ncr(self, variance_delivery, operator, kitchen):
        ncr = ncr_service.create_ncr(
            location_id=kitchen.id,
            reason="Two bottles leaking",
            user=operator,
            delivery_id=variance_delivery.id,
            value="12.50",
        )
        assert ncr.type == ncr_service.TYPE_MANUAL
        assert ncr.auto_generated is False
        assert ncr.ncr_no.endswith("-002")
        assert ncr.value == Decimal("12.50")

    def test_reason_required(self, db_session, open_period, operator, kitchen):
        with pytest.raises(NCRValidationError):
            ncr_service.create_ncr(location_id=kitchen.id, reason="  ", user=operator)

    def test_credited_forces_credit_impact(self, variance_delivery, supervisor):
        ncr = variance_delivery.ncrs[0]
        ncr = ncr_service.update_ncr_status(ncr.id, user=supervisor, status=ncr_service.STATUS_CREDITED)
        assert ncr.financial_impact == ncr_service.IMPACT_CREDIT
        assert ncr.resolved_at is not None

    def test_resolved_needs_financial_impact(self, variance_delivery, supervisor):
        ncr = variance_delivery.ncrs[0]
        with pytest.raises(NCRValidationError) as exc:
            ncr_service.update_ncr_status(ncr.id, user=supervisor, status=ncr_service.STATUS_RESOLVED)
        assert exc.value.code == "FINANCIAL_IMPACT_REQUIRED"

    def test_final_status_is_terminal(self, variance_delivery, supervisor):
        ncr = variance_delivery.ncrs[0]
        ncr_service.update_ncr_status(ncr.id, user=supervisor, status=ncr_service.STATUS_REJECTED)
        with pytest.raises(NCRStateError) as exc:
            ncr_service.update_ncr_status(ncr.id, user=supervisor, status=ncr_service.STATUS_SENT)
        assert exc.value.code == "NCR_CLOSED"

    def test_period_summary_buckets(self, variance_delivery, operator, supervisor, kitchen, open_period):
        auto = variance_delivery.ncrs[0]
        credited = ncr_service.create_ncr(
            location_id=kitchen.id, reason="Short shipped", user=operator,
            delivery_id=variance_delivery.id, value=30,
        )
        pending = ncr_service.create_ncr(
            location_id=kitchen.id, reason="Damaged carton", user=operator,
            delivery_id=variance_delivery.id, value=7,
        )
        ncr_service.update_ncr_status(auto.id, user=supervisor, status="RESOLVED", financial_impact="LOSS")
        ncr_service.update_ncr_status(credited.id, user=supervisor, status="CREDITED")
        ncr_service.update_ncr_status(pending.id, user=supervisor, status="SENT")

        summary = ncr_service.ncr_period_summary(open_period.id, kitchen.id)

        assert summary["credited"]["total"] == 30.0
        assert summary["losses"]["total"] == 10.0
        assert summary["pending"]["count"] == 1
        assert summary["open"]["count"] == 0
        assert summary["net_loss"] == 10.0

    def test_summary_api_requires_period(self, client, variance_delivery, supervisor_headers):
        resp = client.get("/api/ncrs/summary", headers=supervisor_headers)
        assert resp.status_code == 400


# =============================================================================
# POB
# =============================================================================


class TestPOB:

    def test_save_and_total_mandays(self, db_session, open_period, operator, kitchen):
        start = open_period.start_date
        pob_service.save_pob_entries(
            kitchen.id,
            [
                {"date": start.isoformat(), "crew_count": 5, "extra_count": 1},
                {"date": start.replace(day=2).isoformat(), "crew_count": 4, "extra_count": 2},
            ],
            user=operator,
        )
        result = pob_service.get_pob(kitchen.id)
        assert len(result["entries"]) == 2
        assert result["total_mandays"] == 12

    def test_duplicate_dates_rejected(self, db_session, open_period, operator, kitchen):
        day = open_period.start_date.isoformat()
        with pytest.raises(POBValidationError) as exc:
            pob_service.save_pob_entries(
                kitchen.id,
                [{"date": day, "crew_count": 1}, {"date": day, "crew_count": 2}],
                user=operator,
            )
        assert exc.value.code == "DUPLICATE_DATE"

    def test_dates_outside_period_rejected(self, db_session, open_period, operator, kitchen):
        outside = (open_period.end_date + timedelta(days=1)).isoformat()
        with pytest.raises(POBValidationError) as exc:
            pob_service.save_pob_entries(kitchen.id, [{"date": outside, "crew_count": 1}], user=operator)
        assert exc.value.code == "DATE_OUTSIDE_PERIOD"

    def test_ready_location_locks_pob(self, db_session, open_period, operator, supervisor, kitchen):
        rows = pob_service.save_pob_entries(
            kitchen.id, [{"date": open_period.start_date.isoformat(), "crew_count": 3}], user=operator,
        )
        reconciliation_service.save_reconciliation(open_period.id, kitchen.id, user=supervisor)
        period_service.mark_location_ready(open_period.id, kitchen.id, user=supervisor)

        with pytest.raises(POBStateError) as exc:
            pob_service.update_pob_entry(rows[0].id, user=operator, crew_count=8)
        assert exc.value.code == "PERIOD_CLOSED"
        assert pob_service.get_pob(kitchen.id)["total_mandays"] == 3


# =============================================================================
# RECONCILIATION
# =============================================================================


class TestReconciliation:

    def test_consumption_and_manday_cost(self, db_session, open_period, operator, supervisor, kitchen, items, supplier):
        rice, _ = items
        delivery_service.create_delivery(
            location_id=kitchen.id,
            supplier_id=supplier.id,
            delivery_date=None,
            lines=[{"item_id": rice.id, "quantity": 10, "unit_price": "10.00"}],
            user=operator,
            invoice_no="INV-REC",
        )
        issue_service.create_issue(
            location_id=kitchen.id,
            cost_centre="FOOD",
            lines=[{"item_id": rice.id, "quantity": 4}],
            user=operator,
        )
        start = open_period.start_date
        pob_service.save_pob_entries(
            kitchen.id,
            [
                {"date": start.isoformat(), "crew_count": 5, "extra_count": 1},
                {"date": start.replace(day=2).isoformat(), "crew_count": 4, "extra_count": 2},
            ],
            user=operator,
        )

        result = reconciliation_service.save_reconciliation(
            open_period.id, kitchen.id, user=supervisor,
            adjustments=-3, back_charges=5, credits=2, condemnations=1,
        )

        assert result["is_saved"] is True
        assert result["receipts"] == 100.0
        assert result["issues"] == 40.0
        assert result["closing_stock"] == 60.0
        assert result["total_adjustments"] == -1.0
        # 0 + 100 + 0 - 0 - 60 + (-1)
        assert result["consumption"] == 39.0
        assert result["total_mandays"] == 12
        assert result["manday_cost"] == 3.25

    def test_manday_cost_empty_without_pob(self, db_session, open_period, kitchen):
        result = reconciliation_service.get_or_build_reconciliation(open_period.id, kitchen.id)
        assert result["is_saved"] is False
        assert result["manday_cost"] is None

    def test_operator_cannot_save(self, db_session, open_period, operator, kitchen):
        with pytest.raises(ReconciliationPermissionError):
            reconciliation_service.save_reconciliation(open_period.id, kitchen.id, user=operator)

    def test_negative_credits_rejected(self, db_session, open_period, supervisor, kitchen):
        with pytest.raises(ValueError):
            reconciliation_service.save_reconciliation(open_period.id, kitchen.id, user=supervisor, credits=-1)
