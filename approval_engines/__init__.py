"""
approval_engines -- pure calculation layer for the approval workflow.

Engines take domain value objects and return domain value objects.  They
never touch the database, the clock, or any collaborator.
"""

from approval_engines.sequencing import (
    check_sequence,
    evaluate_workflow,
    find_actionable_step,
    resolve_request_status,
    step_status_for_decision,
)

__all__ = [
    "check_sequence",
    "evaluate_workflow",
    "find_actionable_step",
    "resolve_request_status",
    "step_status_for_decision",
]
