"""
Case status automation.

Verifies:
- Every observed transition is recorded, even when its effects fail
- Entering the agreement status creates or revises the single standard
  agreement, renegotiating it once payments exist
- Alvará values become cash-in-full agreements, deduplicated by value
- Leaving the agreement status retires the standard agreement per policy
- Extinguished cases have their documents archived

These go through the SettlementEngine facade, which owns the transactions.
"""

import dataclasses
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from settlement_config import StandardExitPolicy
from settlement_kernel.domain.case_workflow import CaseEffect
from settlement_kernel.domain.dtos import (
    AgreementOrigin,
    AgreementStatus,
    AgreementType,
    CaseStatus,
    PaymentInput,
)
from settlement_kernel.exceptions import (
    AgreementNotLiveError,
    CasePartiesUnavailableError,
    DocumentArchivalError,
)
from settlement_kernel.selectors.agreement_selector import AgreementSelector
from settlement_services.engine import OperationStatus, SettlementEngine

TODAY = date(2024, 1, 15)


@pytest.fixture
def unresolved_terms(make_terms):
    """Terms whose parties come from the case."""

    def _make(**overrides):
        return make_terms(debtor_id=None, creditor_id=None, **overrides)

    return _make


def _enter_agreement(engine, case_id, actor_id, terms=None, alvara_value=None):
    result = engine.update_case(
        case_id, CaseStatus.AGREEMENT, actor_id, terms=terms, alvara_value=alvara_value
    )
    assert result.is_success
    return result.value


def _pay_first(engine, agreement_id, actor_id):
    first = engine.get_agreement_installments(agreement_id).unwrap()[0]
    engine.record_installment_payment(
        first.id, PaymentInput(amount=first.amount, payment_date=TODAY), actor_id
    ).unwrap()


def _case_agreements(session_factory, case_id, origin=None):
    with session_factory() as session:
        return AgreementSelector(session).list_case_agreements(case_id, origin=origin, as_of=TODAY)


# =============================================================================
# Status history
# =============================================================================


class TestStatusHistory:

    def test_transitions_recorded_in_order(self, settlement_engine, case_id, actor_id):
        settlement_engine.update_case(case_id, CaseStatus.IN_PROGRESS, actor_id).unwrap()
        settlement_engine.update_case(case_id, "paid", actor_id, notes="Judgment paid").unwrap()

        history = settlement_engine.get_case_history(case_id).unwrap()
        assert [h.new_status for h in history] == [CaseStatus.IN_PROGRESS, CaseStatus.PAID]
        assert history[0].previous_status is None
        assert history[1].previous_status is CaseStatus.IN_PROGRESS
        assert history[1].notes == "Judgment paid"

    def test_unknown_status_rejected(self, settlement_engine, case_id, actor_id):
        result = settlement_engine.update_case(case_id, "archived", actor_id)
        assert result.status is OperationStatus.VALIDATION_FAILED
        assert result.error_code == "INVALID_CASE_TRANSITION"
        assert settlement_engine.get_case_history(case_id).unwrap() == ()

    def test_mismatched_terms_rejected(self, settlement_engine, case_id, actor_id, make_terms):
        terms = make_terms(case_id=uuid4())
        result = settlement_engine.update_case(case_id, CaseStatus.AGREEMENT, actor_id, terms=terms)
        assert result.status is OperationStatus.VALIDATION_FAILED

    def test_audited(self, settlement_engine, case_id, actor_id):
        settlement_engine.update_case(case_id, CaseStatus.AGREEMENT, actor_id).unwrap()
        trace = settlement_engine.get_audit_trace("Case", case_id).unwrap()
        assert trace.actions == ("case_status_changed",)
        assert trace.entries[0].payload == {"previous_status": None, "new_status": "agreement"}


# =============================================================================
# Standard agreement
# =============================================================================


class TestStandardAgreement:

    def test_created_with_case_parties(
        self, settlement_engine, case_id, actor_id, unresolved_terms, case_parties
    ):
        outcome = _enter_agreement(settlement_engine, case_id, actor_id, unresolved_terms())

        assert outcome.effects == (CaseEffect.UPSERT_STANDARD,)
        assert outcome.is_clean
        view = settlement_engine.get_agreement(outcome.standard_agreement_id).unwrap()
        parties = case_parties.get_case_parties(case_id)
        assert view.origin is AgreementOrigin.STANDARD
        assert view.debtor_id == parties.executed_entity_id
        assert view.creditor_id == parties.client_entity_id

    def test_repeated_updates_keep_one_standard(
        self, settlement_engine, session_factory, case_id, actor_id, unresolved_terms
    ):
        first = _enter_agreement(settlement_engine, case_id, actor_id, unresolved_terms())
        second = _enter_agreement(
            settlement_engine, case_id, actor_id, unresolved_terms(installment_count=6)
        )
        third = _enter_agreement(
            settlement_engine, case_id, actor_id, unresolved_terms(total_value=Decimal("1500.00"))
        )

        assert first.standard_agreement_id == second.standard_agreement_id
        assert second.standard_agreement_id == third.standard_agreement_id
        standards = _case_agreements(session_factory, case_id, AgreementOrigin.STANDARD)
        assert len(standards) == 1
        assert standards[0].total_value == Decimal("1500.00")
        assert standards[0].installment_count == 3

    def test_revision_after_payment_renegotiates(
        self, settlement_engine, session_factory, case_id, actor_id, unresolved_terms
    ):
        first = _enter_agreement(settlement_engine, case_id, actor_id, unresolved_terms())
        _pay_first(settlement_engine, first.standard_agreement_id, actor_id)

        second = _enter_agreement(
            settlement_engine, case_id, actor_id, unresolved_terms(installment_count=5)
        )

        assert second.is_clean
        assert second.standard_agreement_id != first.standard_agreement_id
        old = settlement_engine.get_agreement(first.standard_agreement_id).unwrap()
        new = settlement_engine.get_agreement(second.standard_agreement_id).unwrap()
        assert old.status is AgreementStatus.RENEGOTIATED
        assert old.paid_amount == Decimal("333.33")
        assert new.renegotiated_from_id == old.id
        assert new.installment_count == 5
        live = [
            a for a in _case_agreements(session_factory, case_id, AgreementOrigin.STANDARD)
            if a.status.is_live
        ]
        assert [a.id for a in live] == [new.id]

    def test_missing_parties_reported(self, settlement_engine, actor_id, make_terms):
        other_case = uuid4()
        terms = make_terms(case_id=other_case, debtor_id=None, creditor_id=None)
        outcome = _enter_agreement(settlement_engine, other_case, actor_id, terms)

        assert isinstance(outcome.agreement_error, CasePartiesUnavailableError)
        assert outcome.standard_agreement_id is None
        history = settlement_engine.get_case_history(other_case).unwrap()
        assert len(history) == 1

    def test_completed_standard_not_renegotiated(
        self, settlement_engine, case_id, actor_id, unresolved_terms
    ):
        first = _enter_agreement(
            settlement_engine, case_id, actor_id, unresolved_terms(installment_count=1)
        )
        _pay_first(settlement_engine, first.standard_agreement_id, actor_id)

        second = _enter_agreement(
            settlement_engine, case_id, actor_id, unresolved_terms(installment_count=4)
        )
        assert isinstance(second.agreement_error, AgreementNotLiveError)


# =============================================================================
# Alvará
# =============================================================================


class TestAlvara:

    def test_created_as_cash_in_full(self, settlement_engine, case_id, actor_id):
        outcome = _enter_agreement(
            settlement_engine, case_id, actor_id, alvara_value=Decimal("2500.00")
        )

        assert outcome.effects == (CaseEffect.CREATE_ALVARA,)
        view = settlement_engine.get_agreement(outcome.alvara_agreement_id).unwrap()
        assert view.origin is AgreementOrigin.ALVARA
        assert view.agreement_type is AgreementType.CASH_IN_FULL
        assert view.installment_count == 1
        assert view.installments[0].amount == Decimal("2500.00")

    def test_same_value_deduplicated(self, settlement_engine, case_id, actor_id):
        first = _enter_agreement(settlement_engine, case_id, actor_id, alvara_value=Decimal("2500"))
        second = _enter_agreement(
            settlement_engine, case_id, actor_id, alvara_value=Decimal("2500.00")
        )
        assert first.alvara_agreement_id == second.alvara_agreement_id
        assert len(settlement_engine.list_alvaras(case_id).unwrap()) == 1

    def test_different_value_added(self, settlement_engine, case_id, actor_id):
        _enter_agreement(settlement_engine, case_id, actor_id, alvara_value=Decimal("2500.00"))
        _enter_agreement(settlement_engine, case_id, actor_id, alvara_value=Decimal("700.00"))
        values = sorted(a.total_value for a in settlement_engine.list_alvaras(case_id).unwrap())
        assert values == [Decimal("700.00"), Decimal("2500.00")]

    def test_alongside_standard(self, settlement_engine, case_id, actor_id, unresolved_terms):
        outcome = _enter_agreement(
            settlement_engine, case_id, actor_id, unresolved_terms(), alvara_value=Decimal("300")
        )
        assert outcome.standard_agreement_id is not None
        assert outcome.alvara_agreement_id is not None

    def test_non_positive_value_rejected(self, settlement_engine, case_id, actor_id):
        result = settlement_engine.update_case(
            case_id, CaseStatus.AGREEMENT, actor_id, alvara_value=Decimal("0")
        )
        assert result.status is OperationStatus.VALIDATION_FAILED


# =============================================================================
# Leaving the agreement status
# =============================================================================


class TestRetireStandard:

    def test_unpaid_standard_deleted(self, settlement_engine, case_id, actor_id, unresolved_terms):
        entered = _enter_agreement(settlement_engine, case_id, actor_id, unresolved_terms())
        left = settlement_engine.update_case(case_id, CaseStatus.IN_PROGRESS, actor_id).unwrap()

        assert left.effects == (CaseEffect.RETIRE_STANDARD,)
        assert left.retired_agreement_id == entered.standard_agreement_id
        result = settlement_engine.get_agreement(entered.standard_agreement_id)
        assert result.status is OperationStatus.NOT_FOUND

    def test_paid_standard_kept_by_default(
        self, settlement_engine, case_id, actor_id, unresolved_terms
    ):
        entered = _enter_agreement(settlement_engine, case_id, actor_id, unresolved_terms())
        _pay_first(settlement_engine, entered.standard_agreement_id, actor_id)

        left = settlement_engine.update_case(case_id, CaseStatus.PAID, actor_id).unwrap()

        assert left.retired_agreement_id is None
        view = settlement_engine.get_agreement(entered.standard_agreement_id).unwrap()
        assert view.status is AgreementStatus.ACTIVE

    def test_paid_standard_cancelled_by_policy(
        self,
        session_factory,
        engine_settings,
        deterministic_clock,
        case_parties,
        archiver,
        case_id,
        actor_id,
        unresolved_terms,
    ):
        engine = SettlementEngine(
            session_factory,
            settings=dataclasses.replace(
                engine_settings, standard_exit_policy=StandardExitPolicy.CANCEL_IF_PAID
            ),
            clock=deterministic_clock,
            parties=case_parties,
            archiver=archiver,
        )
        entered = _enter_agreement(engine, case_id, actor_id, unresolved_terms())
        _pay_first(engine, entered.standard_agreement_id, actor_id)

        left = engine.update_case(case_id, CaseStatus.IN_PROGRESS, actor_id).unwrap()

        assert left.retired_agreement_id == entered.standard_agreement_id
        view = engine.get_agreement(entered.standard_agreement_id).unwrap()
        assert view.status is AgreementStatus.CANCELLED
        assert view.paid_amount == Decimal("333.33")

    def test_alvaras_untouched(self, settlement_engine, case_id, actor_id):
        entered = _enter_agreement(
            settlement_engine, case_id, actor_id, alvara_value=Decimal("900.00")
        )
        settlement_engine.update_case(case_id, CaseStatus.IN_PROGRESS, actor_id).unwrap()
        view = settlement_engine.get_agreement(entered.alvara_agreement_id).unwrap()
        assert view.status is AgreementStatus.ACTIVE


# =============================================================================
# Documents
# =============================================================================


class FailingArchiver:
    def archive_case_documents(self, case_id):
        raise OSError("storage unavailable")


class TestArchival:

    def test_extinguished_archives(self, settlement_engine, archiver, case_id, actor_id):
        outcome = settlement_engine.update_case(case_id, CaseStatus.EXTINGUISHED, actor_id).unwrap()
        assert outcome.documents_archived
        assert archiver.archived == [case_id]

    def test_archive_failure_reported(
        self,
        session_factory,
        engine_settings,
        deterministic_clock,
        case_parties,
        case_id,
        actor_id,
        captured_logs,
    ):
        engine = SettlementEngine(
            session_factory,
            settings=engine_settings,
            clock=deterministic_clock,
            parties=case_parties,
            archiver=FailingArchiver(),
        )
        outcome = engine.update_case(case_id, CaseStatus.EXTINGUISHED, actor_id).unwrap()

        assert not outcome.documents_archived
        assert isinstance(outcome.archive_error, DocumentArchivalError)
        assert "storage unavailable" in str(outcome.archive_error)
        assert len(engine.get_case_history(case_id).unwrap()) == 1
        assert any(r["message"] == "case_document_archival_failed" for r in captured_logs())

    def test_other_statuses_do_not_archive(self, settlement_engine, archiver, case_id, actor_id):
        settlement_engine.update_case(case_id, CaseStatus.PAID, actor_id).unwrap()
        assert archiver.archived == []
