"""
approval_engines.sequencing -- Pure sequential-approval rules.

Responsibility:
    Decide which step record of a request is actionable, whether a given
    step may be decided now, what state the request is in given its step
    records, and which request status a decision leads to.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types.

Rules:
    - Strict sequence: the actionable step is the lowest-ordered PENDING
      record, and only while every lower record is APPROVED and the request
      is not terminal.
    - Rejection short-circuit: any REJECTED record makes the request
      REJECTED regardless of the others.
    - Completion equivalence: the request is APPROVED iff every record is
      APPROVED.
"""

from __future__ import annotations

from collections.abc import Sequence

from approval_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    ApprovalDecision,
    ApprovalStatus,
    SequenceCheck,
    StepRecord,
    StepStatus,
    TERMINAL_APPROVAL_STATUSES,
    WorkflowEvaluation,
)


def _ordered(records: Sequence[StepRecord]) -> list[StepRecord]:
    return sorted(records, key=lambda r: r.step_order)


def find_actionable_step(
    records: Sequence[StepRecord],
    request_status: ApprovalStatus = ApprovalStatus.PENDING,
) -> StepRecord | None:
    """Return the step record that may be decided now, if any.

    Returns None when the request is terminal, when any record is REJECTED,
    or when every record is APPROVED.
    """
    if request_status in TERMINAL_APPROVAL_STATUSES:
        return None
    for record in _ordered(records):
        if record.status == StepStatus.APPROVED:
            continue
        if record.status == StepStatus.PENDING:
            return record
        # A REJECTED record blocks everything after it
        return None
    return None


def check_sequence(
    records: Sequence[StepRecord],
    step_record: StepRecord,
    request_status: ApprovalStatus = ApprovalStatus.PENDING,
) -> SequenceCheck:
    """Check whether ``step_record`` is the request's actionable step."""
    actionable = find_actionable_step(records, request_status)
    if actionable is None:
        return SequenceCheck(
            allowed=False,
            expected_step_order=None,
            reason="No step is actionable",
        )
    if actionable.step_record_id != step_record.step_record_id:
        return SequenceCheck(
            allowed=False,
            expected_step_order=actionable.step_order,
            reason=(
                f"Step {step_record.step_order} is not actionable; "
                f"step {actionable.step_order} must be decided first"
            ),
        )
    return SequenceCheck(allowed=True, expected_step_order=actionable.step_order)


def evaluate_workflow(records: Sequence[StepRecord]) -> WorkflowEvaluation:
    """Summarise a request's step records.

    An empty record set is never complete: a request with no steps can
    never be approved.
    """
    ordered = _ordered(records)
    approved = sum(1 for r in ordered if r.status == StepStatus.APPROVED)
    rejected = any(r.status == StepStatus.REJECTED for r in ordered)

    next_order = None
    if not rejected:
        for record in ordered:
            if record.status == StepStatus.PENDING:
                next_order = record.step_order
                break

    return WorkflowEvaluation(
        total_steps=len(ordered),
        approved_steps=approved,
        is_complete=bool(ordered) and approved == len(ordered),
        is_rejected=rejected,
        next_step_order=next_order,
    )


def step_status_for_decision(decision: ApprovalDecision) -> StepStatus:
    """Map a decision to the step record's resulting status.

    SKIP advances the flow exactly like APPROVE.
    """
    if decision == ApprovalDecision.REJECT:
        return StepStatus.REJECTED
    return StepStatus.APPROVED


def resolve_request_status(
    current_status: ApprovalStatus,
    evaluation: WorkflowEvaluation,
) -> ApprovalStatus:
    """Request status after a decision, validated against the lifecycle map.

    Returns ``current_status`` unchanged when the evaluation implies no
    transition.  Raises ValueError if the implied status is not reachable
    from ``current_status``.
    """
    implied = evaluation.request_status
    if implied == current_status:
        return current_status
    if implied not in APPROVAL_TRANSITIONS.get(current_status, frozenset()):
        raise ValueError(
            f"Request status {current_status.value} cannot become {implied.value}"
        )
    return implied

