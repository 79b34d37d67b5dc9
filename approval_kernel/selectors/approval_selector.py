"""
Module: approval_kernel.selectors.approval_selector
Responsibility: Read-only access to approval requests, their step records
    (history), and approver task lists.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Soft-deleted requests and step records are never returned.
    - History is ordered by step_order.
    - Task lists never include step records of terminal requests.  In
      ACTIONABLE mode only the record at the request's current_step is
      listed; ALL_PENDING lists every PENDING record and flags which one
      is actionable.

Failure modes:
    - Returns None or an empty list when nothing matches.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import and_, or_, select

from approval_kernel.domain.approval import (
    ACTIVE_APPROVAL_STATUSES,
    ApprovalRequest,
    ApproverRef,
    ApproverType,
    PendingTask,
    StepRecord,
    StepStatus,
    TargetRef,
    TargetType,
    TaskListMode,
)
from approval_kernel.models.approval import ApprovalRequestModel, StepRecordModel
from approval_kernel.selectors.base import BaseSelector

_ACTIVE_STATUS_VALUES = tuple(s.value for s in ACTIVE_APPROVAL_STATUSES)


class ApprovalSelector(BaseSelector[ApprovalRequestModel]):
    """Queries over approval_requests / approval_step_records."""

    def _named(self, records: Iterable[StepRecordModel]) -> tuple[StepRecord, ...]:
        named = []
        for record in records:
            approver = ApproverRef(ApproverType(record.approver_type), record.approver_id)
            named.append(record.to_dto(approver_name=self._display_name(approver)))
        return tuple(named)

    def _load(self, request_id: UUID) -> ApprovalRequestModel | None:
        return self.session.execute(
            select(ApprovalRequestModel).where(
                ApprovalRequestModel.id == request_id,
                ApprovalRequestModel.is_deleted.is_(False),
            )
        ).scalar_one_or_none()

    def get_request(self, request_id: UUID) -> ApprovalRequest | None:
        model = self._load(request_id)
        if model is None:
            return None
        return model.to_dto(steps=self._named(model.live_step_records()))

    def get_active_request_for_target(self, target: TargetRef) -> ApprovalRequest | None:
        """The PENDING / IN_PROGRESS request gating ``target``, if any."""
        model = self.session.execute(
            select(ApprovalRequestModel).where(
                ApprovalRequestModel.target_type == target.target_type.value,
                ApprovalRequestModel.target_id == target.target_id,
                ApprovalRequestModel.status.in_(_ACTIVE_STATUS_VALUES),
                ApprovalRequestModel.is_deleted.is_(False),
            )
        ).scalar_one_or_none()
        if model is None:
            return None
        return model.to_dto(steps=self._named(model.live_step_records()))

    def list_requests_for_target(self, target: TargetRef) -> list[ApprovalRequest]:
        """Every request ever made for ``target``, oldest first."""
        models = self.session.execute(
            select(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.target_type == target.target_type.value,
                ApprovalRequestModel.target_id == target.target_id,
                ApprovalRequestModel.is_deleted.is_(False),
            )
            .order_by(ApprovalRequestModel.requested_at)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def get_history(self, request_id: UUID) -> list[StepRecord]:
        """Step records of a request ordered by step_order, with approver names."""
        models = self.session.execute(
            select(StepRecordModel)
            .where(
                StepRecordModel.request_id == request_id,
                StepRecordModel.is_deleted.is_(False),
            )
            .order_by(StepRecordModel.step_order)
        ).scalars().all()
        return list(self._named(models))

    def pending_tasks_for(
        self,
        principals: frozenset[ApproverRef],
        mode: TaskListMode = TaskListMode.ACTIONABLE,
    ) -> list[PendingTask]:
        """PENDING step records addressed to any of ``principals``.

        Newest request first.  Document and requester details are left
        empty; the caller enriches them.
        """
        if not principals:
            return []

        approver_match = or_(*(
            and_(
                StepRecordModel.approver_type == ref.approver_type.value,
                StepRecordModel.approver_id == ref.approver_id,
            )
            for ref in principals
        ))
        stmt = (
            select(StepRecordModel, ApprovalRequestModel)
            .join(ApprovalRequestModel, StepRecordModel.request_id == ApprovalRequestModel.id)
            .where(
                approver_match,
                StepRecordModel.status == StepStatus.PENDING.value,
                StepRecordModel.is_deleted.is_(False),
                ApprovalRequestModel.status.in_(_ACTIVE_STATUS_VALUES),
                ApprovalRequestModel.is_deleted.is_(False),
            )
        )
        if mode == TaskListMode.ACTIONABLE:
            stmt = stmt.where(StepRecordModel.step_order == ApprovalRequestModel.current_step)
        stmt = stmt.order_by(
            ApprovalRequestModel.requested_at.desc(),
            StepRecordModel.step_order,
        )

        return [
            PendingTask(
                step_record_id=record.id,
                request_id=request.id,
                step_order=record.step_order,
                step_name=record.step_name,
                target=TargetRef(TargetType(request.target_type), request.target_id),
                requested_by=request.requested_by,
                requested_at=request.requested_at,
                actionable=record.step_order == request.current_step,
            )
            for record, request in self.session.execute(stmt).all()
        ]
