"""
AgreementService lifecycle.

Verifies:
- Creation generates the schedule and the derived snapshot
- One live standard agreement per case
- Term updates reschedule only without payments
- Renegotiation replaces the agreement and cancels open installments
- Cancellation and deletion rules
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from settlement_kernel.domain.dtos import (
    AgreementOrigin,
    AgreementStatus,
    InstallmentStatus,
    PaymentInput,
    RenegotiationTerms,
)
from settlement_kernel.exceptions import (
    AgreementHasPaymentsError,
    AgreementNotFoundError,
    AgreementNotLiveError,
    InvalidRenegotiationError,
    InvalidTermsError,
    StandardAgreementExistsError,
)
from settlement_kernel.models.agreement import FinancialAgreement


TODAY = date(2024, 1, 15)
REASON = "Debtor asked for a longer plan"


def _pay_first(payment_service, agreement, actor_id, amount=None):
    installment = agreement.installments[0]
    return payment_service.record_payment(
        installment.id,
        PaymentInput(amount=amount or installment.amount, payment_date=TODAY),
        actor_id,
    )


# =============================================================================
# Creation
# =============================================================================


class TestCreateAgreement:

    def test_schedule_generated(self, agreement_service, make_terms, actor_id):
        agreement = agreement_service.create_agreement(make_terms(), actor_id)

        assert agreement.status == AgreementStatus.ACTIVE.value
        assert agreement.origin == AgreementOrigin.MANUAL.value
        assert len(agreement.installments) == 3
        assert sum(i.amount for i in agreement.installments) == Decimal("1000.00")
        assert [i.due_date for i in agreement.installments][0] == TODAY
        assert agreement.installment_value == Decimal("333.33")

    def test_snapshot_written(self, agreement_service, make_terms, actor_id):
        agreement = agreement_service.create_agreement(make_terms(), actor_id)

        assert agreement.paid_amount == Decimal("0")
        assert agreement.remaining_balance == Decimal("1000.00")
        assert agreement.next_due_date == TODAY

    def test_entry_value_reduces_installments(self, agreement_service, make_terms, actor_id):
        agreement = agreement_service.create_agreement(
            make_terms(entry_value=Decimal("100.00")), actor_id
        )
        assert [i.amount for i in agreement.installments] == [Decimal("300.00")] * 3

    def test_policy_defaults_applied(self, agreement_service, make_terms, actor_id, policy):
        agreement = agreement_service.create_agreement(make_terms(), actor_id)
        assert agreement.late_payment_fee_pct == policy.late_payment_fee_pct
        assert agreement.late_payment_daily_interest_pct == policy.late_payment_daily_interest_pct

    def test_unresolved_parties_rejected(self, agreement_service, make_terms, actor_id):
        with pytest.raises(InvalidTermsError):
            agreement_service.create_agreement(make_terms(debtor_id=None), actor_id)

    def test_zero_total_rejected(self, agreement_service, make_terms, actor_id):
        with pytest.raises(InvalidTermsError):
            agreement_service.create_agreement(make_terms(total_value=Decimal("0")), actor_id)

    def test_audited(self, agreement_service, auditor, make_terms, actor_id):
        agreement = agreement_service.create_agreement(make_terms(), actor_id)
        trace = auditor.get_trace("FinancialAgreement", agreement.id)
        assert trace.actions == ("agreement_created",)
        assert trace.entries[0].payload["total_value"] == "1000.00"


class TestStandardSlot:

    def test_second_standard_rejected(self, agreement_service, make_terms, actor_id):
        agreement_service.create_agreement(make_terms(), actor_id, origin=AgreementOrigin.STANDARD)
        with pytest.raises(StandardAgreementExistsError):
            agreement_service.create_agreement(
                make_terms(), actor_id, origin=AgreementOrigin.STANDARD
            )

    def test_manual_alongside_standard(self, agreement_service, make_terms, actor_id):
        agreement_service.create_agreement(make_terms(), actor_id, origin=AgreementOrigin.STANDARD)
        manual = agreement_service.create_agreement(make_terms(), actor_id)
        assert manual.standard_case_id is None

    def test_cancel_frees_slot(self, agreement_service, make_terms, actor_id, case_id):
        first = agreement_service.create_agreement(
            make_terms(), actor_id, origin=AgreementOrigin.STANDARD
        )
        agreement_service.cancel(first, actor_id)
        assert agreement_service.find_live_standard(case_id) is None
        second = agreement_service.create_agreement(
            make_terms(), actor_id, origin=AgreementOrigin.STANDARD
        )
        assert agreement_service.find_live_standard(case_id).id == second.id


# =============================================================================
# Term updates
# =============================================================================


class TestUpdateTerms:

    def test_count_change_reschedules(self, agreement_service, make_terms, actor_id):
        agreement = agreement_service.create_agreement(make_terms(), actor_id)
        agreement_service.update_terms(agreement, make_terms(installment_count=4), actor_id)

        assert agreement.installment_count == 4
        assert len(agreement.installments) == 4
        assert agreement.installment_value == Decimal("250.00")

    def test_notes_only_keeps_schedule(self, agreement_service, make_terms, actor_id):
        agreement = agreement_service.create_agreement(make_terms(), actor_id)
        ids = [i.id for i in agreement.installments]
        agreement_service.update_terms(agreement, make_terms(notes="Signed in court"), actor_id)

        assert [i.id for i in agreement.installments] == ids
        assert agreement.notes == "Signed in court"

    def test_reschedule_with_payments_refused(
        self, agreement_service, payment_service, make_terms, actor_id
    ):
        agreement = agreement_service.create_agreement(make_terms(), actor_id)
        _pay_first(payment_service, agreement, actor_id)

        with pytest.raises(AgreementHasPaymentsError):
            agreement_service.update_terms(agreement, make_terms(installment_count=5), actor_id)
        assert len(agreement.installments) == 3

    def test_non_schedule_change_with_payments_allowed(
        self, agreement_service, payment_service, make_terms, actor_id
    ):
        agreement = agreement_service.create_agreement(make_terms(), actor_id)
        _pay_first(payment_service, agreement, actor_id)

        agreement_service.update_terms(agreement, make_terms(notes="Guarantor added"), actor_id)
        assert agreement.notes == "Guarantor added"

    def test_cancelled_not_updatable(self, agreement_service, make_terms, actor_id):
        agreement = agreement_service.create_agreement(make_terms(), actor_id)
        agreement_service.cancel(agreement, actor_id)
        with pytest.raises(AgreementNotLiveError):
            agreement_service.update_terms(agreement, make_terms(), actor_id)


# =============================================================================
# Renegotiation
# =============================================================================


class TestRenegotiate:

    def _terms(self, **overrides):
        values = {
            "new_total_value": Decimal("1000.00"),
            "new_installment_count": 5,
            "new_first_due_date": TODAY + timedelta(days=10),
            "reason": REASON,
        }
        values.update(overrides)
        return RenegotiationTerms(**values)

    def test_replacement_created(self, agreement_service, make_terms, actor_id):
        old = agreement_service.create_agreement(make_terms(), actor_id)
        new = agreement_service.renegotiate(old, self._terms(), actor_id)

        assert old.status == AgreementStatus.RENEGOTIATED.value
        assert old.renegotiation_reason == REASON
        assert all(i.status == InstallmentStatus.CANCELLED.value for i in old.installments)
        assert new.renegotiated_from_id == old.id
        assert new.renegotiation_count == 1
        assert new.installment_count == 5
        assert new.installments[0].due_date == TODAY + timedelta(days=10)

    def test_discount_and_fees(self, agreement_service, make_terms, actor_id):
        old = agreement_service.create_agreement(make_terms(), actor_id)
        new = agreement_service.renegotiate(
            old,
            self._terms(discount_pct=Decimal("10"), additional_fees=Decimal("50.00")),
            actor_id,
        )
        assert new.total_value == Decimal("950.00")

    def test_paid_installments_stay(
        self, agreement_service, payment_service, make_terms, actor_id
    ):
        old = agreement_service.create_agreement(make_terms(), actor_id)
        _pay_first(payment_service, old, actor_id)
        agreement_service.renegotiate(old, self._terms(), actor_id)

        statuses = [i.status for i in old.installments]
        assert statuses == ["paid", "cancelled", "cancelled"]
        assert old.paid_amount == Decimal("333.33")

    def test_standard_slot_moves(self, agreement_service, make_terms, actor_id, case_id):
        old = agreement_service.create_agreement(
            make_terms(), actor_id, origin=AgreementOrigin.STANDARD
        )
        new = agreement_service.renegotiate(old, self._terms(), actor_id)
        assert old.standard_case_id is None
        assert agreement_service.find_live_standard(case_id).id == new.id

    def test_chain_counts(self, agreement_service, make_terms, actor_id):
        first = agreement_service.create_agreement(make_terms(), actor_id)
        second = agreement_service.renegotiate(first, self._terms(), actor_id)
        third = agreement_service.renegotiate(second, self._terms(), actor_id)
        assert third.renegotiation_count == 2
        assert third.renegotiated_from_id == second.id

    def test_past_first_due_date_refused(self, agreement_service, make_terms, actor_id):
        old = agreement_service.create_agreement(make_terms(), actor_id)
        with pytest.raises(InvalidRenegotiationError):
            agreement_service.renegotiate(
                old, self._terms(new_first_due_date=TODAY - timedelta(days=1)), actor_id
            )
        assert old.status == AgreementStatus.ACTIVE.value

    def test_full_discount_refused(self, agreement_service, make_terms, actor_id):
        old = agreement_service.create_agreement(make_terms(), actor_id)
        with pytest.raises(InvalidRenegotiationError):
            agreement_service.renegotiate(old, self._terms(discount_pct=Decimal("100")), actor_id)

    def test_short_reason_refused(self):
        with pytest.raises(InvalidRenegotiationError):
            self._terms(reason="too short")

    def test_cancelled_refused(self, agreement_service, make_terms, actor_id):
        old = agreement_service.create_agreement(make_terms(), actor_id)
        agreement_service.cancel(old, actor_id)
        with pytest.raises(AgreementNotLiveError):
            agreement_service.renegotiate(old, self._terms(), actor_id)

    def test_audited(self, agreement_service, auditor, make_terms, actor_id):
        old = agreement_service.create_agreement(make_terms(), actor_id)
        new = agreement_service.renegotiate(old, self._terms(), actor_id)

        trace = auditor.get_trace("FinancialAgreement", old.id)
        assert trace.actions == ("agreement_created", "agreement_renegotiated")
        assert trace.entries[-1].payload["replacement_id"] == str(new.id)


# =============================================================================
# Cancel and delete
# =============================================================================


class TestCancelAndDelete:

    def test_cancel(self, agreement_service, make_terms, actor_id):
        agreement = agreement_service.create_agreement(make_terms(), actor_id)
        agreement_service.cancel(agreement, actor_id, reason="Debtor deceased")

        assert agreement.status == AgreementStatus.CANCELLED.value
        assert all(i.status == InstallmentStatus.CANCELLED.value for i in agreement.installments)
        assert agreement.next_due_date is None

    def test_cancel_twice_refused(self, agreement_service, make_terms, actor_id):
        agreement = agreement_service.create_agreement(make_terms(), actor_id)
        agreement_service.cancel(agreement, actor_id)
        with pytest.raises(AgreementNotLiveError):
            agreement_service.cancel(agreement, actor_id)

    def test_delete_unpaid(self, agreement_service, session, make_terms, actor_id):
        agreement = agreement_service.create_agreement(make_terms(), actor_id)
        agreement_id = agreement.id
        agreement_service.delete(agreement, actor_id)
        assert session.get(FinancialAgreement, agreement_id) is None

    def test_delete_with_payments_refused(
        self, agreement_service, payment_service, make_terms, actor_id
    ):
        agreement = agreement_service.create_agreement(make_terms(), actor_id)
        _pay_first(payment_service, agreement, actor_id, amount=Decimal("10.00"))
        with pytest.raises(AgreementHasPaymentsError):
            agreement_service.delete(agreement, actor_id)

    def test_unknown_agreement(self, agreement_service):
        with pytest.raises(AgreementNotFoundError):
            agreement_service.get_agreement(uuid4())
