"""
Agreement and case lifecycles.

The agreement workflow guards stored status changes.  The case workflow is
observed, not enforced: case status belongs to the case registry and the
engine only reacts to it.  ``plan_case_effects`` is the transition table the
case automation executes.
"""

from enum import Enum

from settlement_kernel.domain.dtos import AgreementStatus, CaseStatus
from settlement_kernel.domain.workflow import Guard, Transition, Workflow
from settlement_kernel.logging_config import get_logger

logger = get_logger("domain.case_workflow")


REASON_RECORDED = Guard("reason_recorded", "Renegotiation reason given")

_ACTIVE = AgreementStatus.ACTIVE.value
_COMPLETED = AgreementStatus.COMPLETED.value
_DEFAULTED = AgreementStatus.DEFAULTED.value
_CANCELLED = AgreementStatus.CANCELLED.value
_RENEGOTIATED = AgreementStatus.RENEGOTIATED.value

AGREEMENT_LIFECYCLE_WORKFLOW = Workflow(
    name="agreement_lifecycle",
    description="Financial agreement lifecycle",
    initial_state=_ACTIVE,
    states=(_ACTIVE, _COMPLETED, _DEFAULTED, _CANCELLED, _RENEGOTIATED),
    transitions=(
        Transition(_ACTIVE, _COMPLETED, action="settle"),
        Transition(_ACTIVE, _DEFAULTED, action="default"),
        Transition(_DEFAULTED, _ACTIVE, action="cure"),
        Transition(_DEFAULTED, _COMPLETED, action="settle"),
        Transition(_COMPLETED, _ACTIVE, action="reopen"),
        Transition(_ACTIVE, _CANCELLED, action="cancel"),
        Transition(_DEFAULTED, _CANCELLED, action="cancel"),
        Transition(_COMPLETED, _CANCELLED, action="cancel"),
        Transition(_ACTIVE, _RENEGOTIATED, action="renegotiate", guard=REASON_RECORDED),
        Transition(_DEFAULTED, _RENEGOTIATED, action="renegotiate", guard=REASON_RECORDED),
    ),
    terminal_states=(_CANCELLED, _RENEGOTIATED),
)

_IN_PROGRESS = CaseStatus.IN_PROGRESS.value
_AGREEMENT = CaseStatus.AGREEMENT.value
_EXTINGUISHED = CaseStatus.EXTINGUISHED.value
_PAID = CaseStatus.PAID.value

CASE_LIFECYCLE_WORKFLOW = Workflow(
    name="case_lifecycle",
    description="Legal case status as observed by the settlement engine",
    initial_state=_IN_PROGRESS,
    states=(_IN_PROGRESS, _AGREEMENT, _EXTINGUISHED, _PAID),
    transitions=(
        Transition(_IN_PROGRESS, _AGREEMENT, action="settle_case"),
        Transition(_AGREEMENT, _AGREEMENT, action="revise_terms"),
        Transition(_AGREEMENT, _IN_PROGRESS, action="reopen_case"),
        Transition(_AGREEMENT, _EXTINGUISHED, action="extinguish"),
        Transition(_AGREEMENT, _PAID, action="close_paid"),
        Transition(_IN_PROGRESS, _EXTINGUISHED, action="extinguish"),
        Transition(_IN_PROGRESS, _PAID, action="close_paid"),
        Transition(_EXTINGUISHED, _AGREEMENT, action="settle_case"),
        Transition(_PAID, _AGREEMENT, action="settle_case"),
        Transition(_EXTINGUISHED, _IN_PROGRESS, action="reopen_case"),
        Transition(_PAID, _IN_PROGRESS, action="reopen_case"),
    ),
)


class CaseEffect(str, Enum):
    """Side effects a case transition has on agreements and documents."""

    UPSERT_STANDARD = "upsert_standard"
    CREATE_ALVARA = "create_alvara"
    RETIRE_STANDARD = "retire_standard"
    ARCHIVE_DOCUMENTS = "archive_documents"


def plan_case_effects(
    previous: CaseStatus | None,
    new: CaseStatus,
    has_standard_terms: bool,
    has_alvara_value: bool,
) -> tuple[CaseEffect, ...]:
    """
    Effects of moving a case from ``previous`` to ``new``, in execution order.

    * -> agreement with terms       upsert the standard agreement
    * -> agreement with alvara      add a cash-in-full alvara agreement
    agreement -> anything else      retire the standard agreement
    * -> extinguished               archive the case's documents
    """
    effects: list[CaseEffect] = []
    if new is CaseStatus.AGREEMENT:
        if has_standard_terms:
            effects.append(CaseEffect.UPSERT_STANDARD)
        if has_alvara_value:
            effects.append(CaseEffect.CREATE_ALVARA)
    elif previous is CaseStatus.AGREEMENT:
        effects.append(CaseEffect.RETIRE_STANDARD)

    if new is CaseStatus.EXTINGUISHED:
        effects.append(CaseEffect.ARCHIVE_DOCUMENTS)

    transition = CASE_LIFECYCLE_WORKFLOW.find(
        (previous or CaseStatus.IN_PROGRESS).value, new.value
    )
    logger.debug(
        "case_effects_planned",
        extra={
            "previous_status": previous.value if previous else None,
            "new_status": new.value,
            "action": transition.action if transition else None,
            "effects": [e.value for e in effects],
        },
    )
    return tuple(effects)


logger.info(
    "lifecycle_workflows_registered",
    extra={
        "workflows": [AGREEMENT_LIFECYCLE_WORKFLOW.name, CASE_LIFECYCLE_WORKFLOW.name],
        "transition_count": len(AGREEMENT_LIFECYCLE_WORKFLOW.transitions)
        + len(CASE_LIFECYCLE_WORKFLOW.transitions),
    },
)
