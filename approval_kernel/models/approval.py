"""
Module: approval_kernel.models.approval
Responsibility: ORM persistence for approval requests and their step records.

Architecture position: Kernel > Models.  May import from db/ and exceptions.

Invariants enforced:
    - Valid status values (check constraints on both tables).
    - At most one active (pending / in_progress, non-deleted) request per
      target document (partial unique index).
    - Step records of one request have unique step_order values.
    - approved_at and rejected_at are mutually exclusive.
    - A decided step record never changes status again (ORM listener; the
      WorkflowEngine additionally uses compare-and-swap UPDATEs).

Failure modes:
    - IntegrityError on a second active request for the same target.
    - IntegrityError on duplicate (request_id, step_order).
    - InvalidApprovalTransitionError when a flush would rewrite a decided
      step record's status.

Audit relevance:
    Step records form the approval history shown for audit.  Rows are
    owned by the workflow; the CRUD layer never writes them directly.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from approval_kernel.exceptions import InvalidApprovalTransitionError

if TYPE_CHECKING:
    from approval_kernel.domain.approval import ApprovalRequest, StepRecord


class ApprovalRequestModel(TrackedBase):
    """Persistent approval request.

    Contract:
        Immutable after creation except for status, completed_at,
        current_step, cancellation_reason, and the owned step records.
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'in_progress', 'approved', 'rejected', 'cancelled')",
            name="ck_approval_requests_valid_status",
        ),
        CheckConstraint(
            "target_type IN ('quote', 'purchase_order')",
            name="ck_approval_requests_target_type",
        ),
        Index(
            "ix_approval_requests_active_target_unique",
            "target_type", "target_id",
            unique=True,
            postgresql_where=text(
                "status IN ('pending', 'in_progress') AND is_deleted = false"
            ),
            sqlite_where=text(
                "status IN ('pending', 'in_progress') AND is_deleted = 0"
            ),
        ),
        Index("ix_approval_requests_target", "target_type", "target_id", "requested_at"),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("flow_templates.id"),
        nullable=False,
    )
    target_type: Mapped[str] = mapped_column(String(30), nullable=False)
    target_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")
    requested_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    current_step: Mapped[int | None] = mapped_column(nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    step_records: Mapped[list["StepRecordModel"]] = relationship(
        "StepRecordModel",
        back_populates="request",
        order_by="StepRecordModel.step_order",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.id} "
            f"{self.target_type}:{self.target_id} status={self.status}>"
        )

    def live_step_records(self) -> list["StepRecordModel"]:
        return [r for r in self.step_records if not r.is_deleted]

    def to_dto(
        self,
        steps: tuple[StepRecord, ...] | None = None,
    ) -> ApprovalRequest:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.approval import (
            ApprovalRequest as ApprovalRequestDTO,
            ApprovalStatus,
            TargetRef,
            TargetType,
        )

        if steps is None:
            steps = tuple(r.to_dto() for r in self.live_step_records())

        return ApprovalRequestDTO(
            request_id=self.id,
            template_id=self.template_id,
            target=TargetRef(TargetType(self.target_type), self.target_id),
            requested_by=self.requested_by,
            status=ApprovalStatus(self.status),
            requested_at=self.requested_at,
            completed_at=self.completed_at,
            notes=self.notes,
            current_step=self.current_step,
            steps=steps,
        )


class StepRecordModel(TrackedBase):
    """Persistent step record -- a frozen copy of one template step.

    Contract:
        Created PENDING; transitions exactly once to APPROVED or REJECTED.
    """

    __tablename__ = "approval_step_records"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_approval_step_records_valid_status",
        ),
        CheckConstraint(
            "NOT (approved_at IS NOT NULL AND rejected_at IS NOT NULL)",
            name="ck_approval_step_records_single_outcome",
        ),
        CheckConstraint("step_order >= 1", name="ck_approval_step_records_positive_order"),
        UniqueConstraint(
            "request_id", "step_order",
            name="uq_approval_step_records_order",
        ),
        Index(
            "ix_approval_step_records_approver",
            "approver_type", "approver_id", "status",
        ),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.id"),
        nullable=False,
    )
    step_order: Mapped[int] = mapped_column(nullable=False)
    step_name: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    approver_type: Mapped[str] = mapped_column(String(30), nullable=False)
    approver_id: Mapped[str] = mapped_column(String(100), nullable=False)
    is_skippable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")
    skipped: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    request: Mapped["ApprovalRequestModel"] = relationship(
        "ApprovalRequestModel",
        back_populates="step_records",
    )

    def __repr__(self) -> str:
        return (
            f"<StepRecord {self.id} request={self.request_id} "
            f"order={self.step_order} status={self.status}>"
        )

    def to_dto(self, approver_name: str = "") -> StepRecord:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.approval import (
            ApproverRef,
            ApproverType,
            StepRecord as StepRecordDTO,
            StepStatus,
        )

        return StepRecordDTO(
            step_record_id=self.id,
            request_id=self.request_id,
            step_order=self.step_order,
            approver=ApproverRef(ApproverType(self.approver_type), self.approver_id),
            status=StepStatus(self.status),
            step_name=self.step_name,
            is_skippable=self.is_skippable,
            skipped=self.skipped,
            approved_at=self.approved_at,
            rejected_at=self.rejected_at,
            comments=self.comments,
            decided_by_id=self.decided_by_id,
            approver_name=approver_name,
        )


# =============================================================================
# ORM-level guard: decided step records never change status
# =============================================================================


@event.listens_for(StepRecordModel, "before_update")
def prevent_decided_step_mutation(mapper, connection, target):
    """Reject unit-of-work flushes that rewrite a decided step's status."""
    history = inspect(target).attrs.status.history
    if not history.has_changes() or not history.deleted:
        return
    previous = history.deleted[0]
    if previous != "pending":
        raise InvalidApprovalTransitionError(previous, target.status)
