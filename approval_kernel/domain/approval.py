"""
Approval domain types (``approval_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the approval workflow.  Defines the request and
step lifecycle state machines, template/step definitions, frozen request
snapshots, task-list rows, evaluation results, and the collaborator
protocols (approver directory, notification sink).

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Request lifecycle -- ``APPROVAL_TRANSITIONS`` defines the only valid
  request status changes.  Terminal states have no outgoing edges.
* Step lifecycle -- ``STEP_TRANSITIONS``: a step record leaves PENDING
  exactly once and never reverts.
* Snapshot isolation -- ``StepRecord`` carries copied approver/order
  fields, never a reference to the template's ``FlowStep``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Protocol
from uuid import UUID


# =========================================================================
# Enumerations
# =========================================================================


class TargetType(str, Enum):
    """Business documents that can be gated by an approval request."""

    QUOTE = "quote"
    PURCHASE_ORDER = "purchase_order"


class ApproverType(str, Enum):
    """How a flow step designates its approver."""

    USER = "user"
    ROLE = "role"
    DEPARTMENT = "department"


class ApprovalStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: frozenset({
        ApprovalStatus.IN_PROGRESS,
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.CANCELLED,
    }),
    ApprovalStatus.IN_PROGRESS: frozenset({
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.CANCELLED,
    }),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.CANCELLED: frozenset(),
}

ACTIVE_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.PENDING,
    ApprovalStatus.IN_PROGRESS,
})

TERMINAL_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.CANCELLED,
})


class StepStatus(str, Enum):
    """Per-approver decision slot states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.APPROVED, StepStatus.REJECTED}),
    StepStatus.APPROVED: frozenset(),
    StepStatus.REJECTED: frozenset(),
}


class ApprovalDecision(str, Enum):
    """Decisions an approver can make on the actionable step.

    SKIP is only accepted on steps frozen with ``is_skippable``; it advances
    the flow exactly like APPROVE and is recorded as APPROVED with
    ``skipped=True``.
    """

    APPROVE = "approve"
    REJECT = "reject"
    SKIP = "skip"


class DocumentStatus(str, Enum):
    """Status values of quote / purchase-order documents.

    The approval workflow writes DRAFT, PENDING, APPROVED, and REJECTED;
    the remaining values belong to the documents' own lifecycles.
    """

    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    ORDERED = "ordered"
    DELIVERED = "delivered"
    COMPLETED = "completed"


# Document status driven by each request status
DOCUMENT_STATUS_FOR_REQUEST: dict[ApprovalStatus, DocumentStatus] = {
    ApprovalStatus.PENDING: DocumentStatus.PENDING,
    ApprovalStatus.IN_PROGRESS: DocumentStatus.PENDING,
    ApprovalStatus.APPROVED: DocumentStatus.APPROVED,
    ApprovalStatus.REJECTED: DocumentStatus.REJECTED,
    ApprovalStatus.CANCELLED: DocumentStatus.DRAFT,
}


class NotificationType(str, Enum):
    """Notification kinds emitted by the workflow."""

    APPROVAL_COMPLETED = "approval_completed"
    APPROVAL_REJECTED = "approval_rejected"


class TaskListMode(str, Enum):
    """Which pending step records appear in an approver's task list."""

    ACTIONABLE = "actionable"
    ALL_PENDING = "all_pending"


# =========================================================================
# References
# =========================================================================


@dataclass(frozen=True)
class ApproverRef:
    """Designates an approver by user, role, or department."""

    approver_type: ApproverType
    approver_id: str

    def __str__(self) -> str:
        return f"{self.approver_type.value}:{self.approver_id}"

    @classmethod
    def user(cls, user_id: UUID | str) -> ApproverRef:
        return cls(ApproverType.USER, str(user_id))

    @classmethod
    def role(cls, role: str) -> ApproverRef:
        return cls(ApproverType.ROLE, role)

    @classmethod
    def department(cls, department: str) -> ApproverRef:
        return cls(ApproverType.DEPARTMENT, department)


@dataclass(frozen=True)
class TargetRef:
    """Tagged reference to a quote or purchase order."""

    target_type: TargetType
    target_id: UUID

    def __str__(self) -> str:
        return f"{self.target_type.value}:{self.target_id}"


# =========================================================================
# Template definitions
# =========================================================================


@dataclass(frozen=True)
class FlowStepSpec:
    """Caller-supplied step definition used to create or replace a template's steps."""

    step_order: int
    approver: ApproverRef
    step_name: str = ""
    description: str | None = None
    is_skippable: bool = False


@dataclass(frozen=True)
class FlowStep:
    """Persisted step of a flow template."""

    step_id: UUID
    template_id: UUID
    step_order: int
    approver: ApproverRef
    step_name: str = ""
    description: str | None = None
    is_skippable: bool = False
    approver_name: str = ""


@dataclass(frozen=True)
class FlowTemplate:
    """A flow template with its ordered steps."""

    template_id: UUID
    template_code: str
    name: str
    target_type: TargetType
    description: str | None = None
    is_active: bool = True
    steps: tuple[FlowStep, ...] = ()
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by_id: UUID | None = None
    updated_by_id: UUID | None = None


@dataclass(frozen=True)
class FlowTemplateSummary:
    """Template list row: header fields plus step count and updater name."""

    template_id: UUID
    template_code: str
    name: str
    target_type: TargetType
    description: str | None
    is_active: bool
    step_count: int
    updated_at: datetime | None
    updated_by_name: str = ""


# =========================================================================
# Request and Step Records
# =========================================================================


@dataclass(frozen=True)
class StepRecord:
    """One approver's decision slot within a request.  Frozen at creation.

    ``approved_at`` and ``rejected_at`` are mutually exclusive and each set
    at most once.
    """

    step_record_id: UUID
    request_id: UUID
    step_order: int
    approver: ApproverRef
    status: StepStatus = StepStatus.PENDING
    step_name: str = ""
    is_skippable: bool = False
    skipped: bool = False
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    comments: str | None = None
    decided_by_id: UUID | None = None
    approver_name: str = ""


@dataclass(frozen=True)
class ApprovalRequest:
    """Immutable snapshot of an approval request and its step records."""

    request_id: UUID
    template_id: UUID
    target: TargetRef
    requested_by: UUID
    status: ApprovalStatus = ApprovalStatus.PENDING
    requested_at: datetime | None = None
    completed_at: datetime | None = None
    notes: str | None = None
    current_step: int | None = None
    steps: tuple[StepRecord, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_APPROVAL_STATUSES

    def step(self, step_order: int) -> StepRecord | None:
        for record in self.steps:
            if record.step_order == step_order:
                return record
        return None


@dataclass(frozen=True)
class PendingTask:
    """A step record awaiting the user's decision, enriched for display."""

    step_record_id: UUID
    request_id: UUID
    step_order: int
    step_name: str
    target: TargetRef
    requested_by: UUID
    requested_at: datetime | None
    requester_name: str = ""
    document_number: str | None = None
    total_amount: Decimal | None = None
    actionable: bool = True


@dataclass(frozen=True)
class TargetDocument:
    """Status view of a quote or purchase order."""

    target: TargetRef
    document_number: str
    status: DocumentStatus
    total_amount: Decimal | None = None


@dataclass(frozen=True)
class NotificationMessage:
    """A notification the workflow asks a sink to deliver."""

    recipient_id: UUID
    notification_type: NotificationType
    title: str
    message: str
    link: str | None = None


@dataclass(frozen=True)
class Notification:
    """A stored notification as shown in a user's inbox."""

    notification_id: UUID
    recipient_id: UUID
    notification_type: NotificationType
    title: str
    message: str
    link: str | None = None
    is_read: bool = False
    created_at: datetime | None = None


# =========================================================================
# Evaluation Results
# =========================================================================


@dataclass(frozen=True)
class SequenceCheck:
    """Whether a step record may be decided now."""

    allowed: bool
    expected_step_order: int | None = None
    reason: str = ""


@dataclass(frozen=True)
class WorkflowEvaluation:
    """Aggregate state of a request's step records."""

    total_steps: int
    approved_steps: int
    is_complete: bool = False
    is_rejected: bool = False
    next_step_order: int | None = None

    @property
    def request_status(self) -> ApprovalStatus:
        """Request status implied by the step records alone."""
        if self.is_rejected:
            return ApprovalStatus.REJECTED
        if self.is_complete:
            return ApprovalStatus.APPROVED
        if self.approved_steps > 0:
            return ApprovalStatus.IN_PROGRESS
        return ApprovalStatus.PENDING


# =========================================================================
# Collaborator Protocols
# =========================================================================


class ApproverDirectory(Protocol):
    """Pluggable identity/organization lookups for approver references."""

    def display_name(self, approver: ApproverRef) -> str:
        """Return a human-readable name for an approver reference."""
        ...

    def principals_for(self, user_id: UUID) -> frozenset[ApproverRef]:
        """Return every approver reference the user satisfies."""
        ...


class NotificationSink(Protocol):
    """Fire-and-forget notification delivery."""

    def enqueue(self, notification: NotificationMessage) -> None:
        """Queue a notification.  Raises NotificationDeliveryError on failure."""
        ...
