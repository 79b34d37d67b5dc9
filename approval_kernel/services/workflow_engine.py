"""
approval_kernel.services.workflow_engine -- The approval state machine.

Responsibility:
    Creates approval requests from flow templates, records step decisions
    in strict sequence, detects completion and rejection, propagates the
    outcome to the target document, and requests notifications.  Also
    serves the read operations built on the same rules (task lists,
    history, request lookups).

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/
    and the pure approval_engines rules.

Invariants enforced:
    - Step records are frozen copies of the template's steps with
      step_order exactly 1..N.
    - Strict sequential approval: only the lowest-ordered PENDING record
      may be decided, and only while every lower record is APPROVED.
    - Monotonic terminal transition: decisions on a terminal request are
      refused; step and request status changes use compare-and-swap
      UPDATEs (``WHERE status = <expected>``).
    - Completion equivalence: APPROVED iff every step record is APPROVED.
    - Rejection short-circuit: any REJECTED record makes the request
      REJECTED.
    - One active request per target document.
    - Multi-write units (submission, decision, cancellation) are atomic
      via ``atomic_unit``.

Failure modes:
    - TemplateNotFoundError / InvalidTemplateError on unusable templates.
    - TargetDocumentNotFoundError / TargetNotSubmittableError /
      DuplicateApprovalRequestError on submission.
    - ApprovalRequestNotFoundError / StepRecordNotFoundError on lookups.
    - OutOfSequenceError, ApprovalAlreadyResolvedError,
      StepAlreadyDecidedError, UnauthorizedApproverError,
      RejectionCommentRequiredError, StepNotSkippableError on decide.
    - UnauthorizedActorError when a non-requester withdraws a request.
    - PartialWriteError (FATAL) when a failed unit cannot be rolled back.
    - Notification failures are logged and swallowed; they never undo a
      decision.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import replace
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from approval_engines import (
    check_sequence,
    evaluate_workflow,
    resolve_request_status,
    step_status_for_decision,
)
from approval_kernel.domain.approval import (
    DOCUMENT_STATUS_FOR_REQUEST,
    TERMINAL_APPROVAL_STATUSES,
    ApprovalDecision,
    ApprovalRequest,
    ApprovalStatus,
    ApproverDirectory,
    ApproverRef,
    DocumentStatus,
    NotificationMessage,
    NotificationSink,
    NotificationType,
    PendingTask,
    StepRecord,
    StepStatus,
    TargetDocument,
    TargetRef,
    TargetType,
    TaskListMode,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.step_editing import step_orders_contiguous
from approval_kernel.exceptions import (
    ApprovalAlreadyResolvedError,
    ApprovalRequestNotFoundError,
    DuplicateApprovalRequestError,
    InvalidApprovalTransitionError,
    InvalidTemplateError,
    OutOfSequenceError,
    RejectionCommentRequiredError,
    StepAlreadyDecidedError,
    StepNotSkippableError,
    StepRecordNotFoundError,
    TargetNotSubmittableError,
    TemplateNotFoundError,
    UnauthorizedActorError,
    UnauthorizedApproverError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.approval import ApprovalRequestModel, StepRecordModel
from approval_kernel.models.flow_template import FlowTemplateModel
from approval_kernel.selectors.approval_selector import ApprovalSelector
from approval_kernel.services.approver_directory import UserProfileDirectory
from approval_kernel.services.base import BaseService, atomic_unit
from approval_kernel.services.notification_service import DatabaseNotificationSink
from approval_kernel.services.target_document_adapter import TargetDocumentAdapter

logger = get_logger("services.workflow_engine")

DEFAULT_SUBMITTABLE_STATUSES: frozenset[DocumentStatus] = frozenset({
    DocumentStatus.DRAFT,
    DocumentStatus.REJECTED,
})

DEFAULT_NOTIFICATION_LINKS: dict[TargetType, str] = {
    TargetType.QUOTE: "/quotes/{target_id}",
    TargetType.PURCHASE_ORDER: "/purchase-orders/{target_id}",
}


class WorkflowEngine(BaseService[ApprovalRequestModel]):
    """Approval request lifecycle: submit, decide, cancel, and query.

    Collaborators default to the SQL-backed implementations bound to the
    same session; pass others (or an EngineSettings-derived configuration
    via ``approval_config.bridges.build_workflow_engine``) to override.
    """

    def __init__(
        self,
        session: Session,
        adapter: TargetDocumentAdapter | None = None,
        directory: ApproverDirectory | None = None,
        notification_sink: NotificationSink | None = None,
        clock: Clock | None = None,
        task_list_mode: TaskListMode = TaskListMode.ACTIONABLE,
        submittable_statuses: Iterable[DocumentStatus] = DEFAULT_SUBMITTABLE_STATUSES,
        notification_links: Mapping[TargetType, str] | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._adapter = adapter or TargetDocumentAdapter(session, self._clock)
        self._directory = directory or UserProfileDirectory(session)
        self._sink = notification_sink or DatabaseNotificationSink(session, self._clock)
        self._task_list_mode = task_list_mode
        self._submittable_statuses = frozenset(submittable_statuses)
        self._notification_links = dict(
            DEFAULT_NOTIFICATION_LINKS if notification_links is None else notification_links
        )
        self._selector = ApprovalSelector(session, self._directory)

    # ------------------------------------------------------------------
    # Loading helpers
    # ------------------------------------------------------------------

    def _load_request(self, request_id: UUID, lock: bool = False) -> ApprovalRequestModel:
        stmt = select(ApprovalRequestModel).where(
            ApprovalRequestModel.id == request_id,
            ApprovalRequestModel.is_deleted.is_(False),
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        return model

    def _load_template(self, template_id: UUID) -> FlowTemplateModel:
        model = self.session.execute(
            select(FlowTemplateModel).where(
                FlowTemplateModel.id == template_id,
                FlowTemplateModel.is_deleted.is_(False),
            )
        ).scalar_one_or_none()
        if model is None:
            raise TemplateNotFoundError(str(template_id))
        return model

    def _current_status(self, model_cls, row_id: UUID) -> str | None:
        return self.session.execute(
            select(model_cls.status).where(model_cls.id == row_id)
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit_for_approval(
        self,
        template_id: UUID,
        target: TargetRef,
        requested_by: UUID,
        notes: str | None = None,
    ) -> ApprovalRequest:
        """Create a request and its step records and mark the document PENDING.

        The request row, every step record, and the document status change
        are written as one unit.
        """
        with LogContext.bind(
            actor_id=str(requested_by),
            template_id=str(template_id),
            target=str(target),
        ):
            template = self._load_template(template_id)
            if not template.is_active:
                raise InvalidTemplateError(str(template_id), "template is inactive")
            if template.target_type != target.target_type.value:
                raise InvalidTemplateError(
                    str(template_id),
                    f"template applies to {template.target_type}, "
                    f"not {target.target_type.value}",
                )
            steps = template.live_steps()
            if not steps:
                raise InvalidTemplateError(str(template_id), "template has no active steps")
            if not step_orders_contiguous([s.step_order for s in steps]):
                raise InvalidTemplateError(
                    str(template_id), "active step orders are not contiguous from 1",
                )

            document = self._adapter.get_document(target, for_update=True)
            if document.status not in self._submittable_statuses:
                raise TargetNotSubmittableError(
                    target.target_type.value, str(target.target_id), document.status.value,
                )
            existing = self._selector.get_active_request_for_target(target)
            if existing is not None:
                raise DuplicateApprovalRequestError(
                    target.target_type.value,
                    str(target.target_id),
                    str(existing.request_id),
                )

            now = self._clock.now()
            request = ApprovalRequestModel(
                template_id=template.id,
                target_type=target.target_type.value,
                target_id=target.target_id,
                status=ApprovalStatus.PENDING.value,
                requested_by=requested_by,
                requested_at=now,
                notes=notes,
                current_step=steps[0].step_order,
                is_deleted=False,
                created_by_id=requested_by,
            )
            with atomic_unit(
                self.session,
                "submit_for_approval",
                {"template_id": str(template_id), "target": str(target)},
            ):
                self.session.add(request)
                self.session.flush()
                for step in steps:
                    request.step_records.append(
                        StepRecordModel(
                            step_order=step.step_order,
                            step_name=step.step_name,
                            approver_type=step.approver_type,
                            approver_id=step.approver_id,
                            is_skippable=step.is_skippable,
                            status=StepStatus.PENDING.value,
                            skipped=False,
                            is_deleted=False,
                            created_by_id=requested_by,
                        )
                    )
                self.session.flush()
                self._adapter.set_status(target, DocumentStatus.PENDING, requested_by)

            with LogContext.bind(request_id=str(request.id)):
                logger.info(
                    "approval_request_submitted",
                    extra={
                        "step_count": len(steps),
                        "document_number": document.document_number,
                    },
                )
            return self.get_request(request.id)

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def _authorize(self, record: StepRecord, acting_user_id: UUID) -> None:
        principals = self._directory.principals_for(acting_user_id)
        if record.approver not in principals:
            raise UnauthorizedApproverError(
                str(acting_user_id),
                record.approver.approver_type.value,
                record.approver.approver_id,
            )

    def decide(
        self,
        request_id: UUID,
        step_record_id: UUID,
        acting_user_id: UUID,
        decision: ApprovalDecision,
        comments: str | None = None,
    ) -> ApprovalRequest:
        """Record APPROVE / REJECT / SKIP on the request's actionable step.

        Checks run in this order: step exists, request not terminal, step
        still PENDING, step is the actionable one, actor satisfies the
        step's approver reference, then comment / skip rules.
        """
        with LogContext.bind(request_id=str(request_id), actor_id=str(acting_user_id)):
            model = self._load_request(request_id, lock=True)
            records = [r.to_dto() for r in model.live_step_records()]
            record = next((r for r in records if r.step_record_id == step_record_id), None)
            if record is None:
                raise StepRecordNotFoundError(str(request_id), str(step_record_id))

            current = ApprovalStatus(model.status)
            if current in TERMINAL_APPROVAL_STATUSES:
                raise ApprovalAlreadyResolvedError(str(request_id), current.value)
            if record.status != StepStatus.PENDING:
                raise StepAlreadyDecidedError(str(step_record_id), record.status.value)

            sequence = check_sequence(records, record, current)
            if not sequence.allowed:
                raise OutOfSequenceError(
                    str(request_id), record.step_order, sequence.expected_step_order,
                )

            self._authorize(record, acting_user_id)

            comments = (comments or "").strip() or None
            if decision == ApprovalDecision.REJECT and comments is None:
                raise RejectionCommentRequiredError(str(step_record_id))
            if decision == ApprovalDecision.SKIP and not record.is_skippable:
                raise StepNotSkippableError(str(step_record_id), record.step_order)

            target = TargetRef(TargetType(model.target_type), model.target_id)
            now = self._clock.now()
            step_status = step_status_for_decision(decision)
            document: TargetDocument | None = None

            with atomic_unit(
                self.session,
                "decide",
                {
                    "request_id": str(request_id),
                    "step_record_id": str(step_record_id),
                    "decision": decision.value,
                },
            ):
                self._swap_step_status(record, step_status, decision, acting_user_id, comments, now)

                decided = replace(
                    record,
                    status=step_status,
                    skipped=decision == ApprovalDecision.SKIP,
                )
                evaluation = evaluate_workflow(
                    [decided if r.step_record_id == step_record_id else r for r in records]
                )
                try:
                    new_status = resolve_request_status(current, evaluation)
                except ValueError as exc:
                    raise InvalidApprovalTransitionError(
                        current.value, evaluation.request_status.value,
                    ) from exc

                self._swap_request_status(
                    request_id,
                    current,
                    new_status,
                    acting_user_id,
                    now,
                    current_step=evaluation.next_step_order,
                )
                if new_status in TERMINAL_APPROVAL_STATUSES:
                    document = self._adapter.set_status(
                        target, DOCUMENT_STATUS_FOR_REQUEST[new_status], acting_user_id,
                    )

            logger.info(
                "approval_step_decided",
                extra={
                    "step_record_id": str(step_record_id),
                    "step_order": record.step_order,
                    "decision": decision.value,
                    "from_status": current.value,
                    "to_status": new_status.value,
                },
            )

            if new_status == ApprovalStatus.APPROVED:
                logger.info(
                    "approval_request_completed",
                    extra={"total_steps": evaluation.total_steps},
                )
                self._notify_outcome(model.requested_by, target, document, new_status)
            elif new_status == ApprovalStatus.REJECTED:
                logger.info(
                    "approval_request_rejected",
                    extra={"rejected_step_order": record.step_order},
                )
                self._notify_outcome(model.requested_by, target, document, new_status)

            return self.get_request(request_id)

    def _swap_step_status(
        self,
        record: StepRecord,
        step_status: StepStatus,
        decision: ApprovalDecision,
        acting_user_id: UUID,
        comments: str | None,
        now: datetime,
    ) -> None:
        """PENDING -> step_status, only if the row is still PENDING."""
        values = {
            "status": step_status.value,
            "comments": comments,
            "decided_by_id": acting_user_id,
            "skipped": decision == ApprovalDecision.SKIP,
            "updated_at": now,
            "updated_by_id": acting_user_id,
        }
        if step_status == StepStatus.APPROVED:
            values["approved_at"] = now
        else:
            values["rejected_at"] = now

        result = self.session.execute(
            update(StepRecordModel)
            .where(
                StepRecordModel.id == record.step_record_id,
                StepRecordModel.status == StepStatus.PENDING.value,
            )
            .values(**values)
        )
        if result.rowcount != 1:
            raise StepAlreadyDecidedError(
                str(record.step_record_id),
                self._current_status(StepRecordModel, record.step_record_id),
            )

    def _swap_request_status(
        self,
        request_id: UUID,
        expected: ApprovalStatus,
        new_status: ApprovalStatus,
        acting_user_id: UUID,
        now: datetime,
        current_step: int | None = None,
        cancellation_reason: str | None = None,
    ) -> None:
        """expected -> new_status, only if the row still has ``expected``."""
        terminal = new_status in TERMINAL_APPROVAL_STATUSES
        values = {
            "status": new_status.value,
            "current_step": None if terminal else current_step,
            "updated_at": now,
            "updated_by_id": acting_user_id,
        }
        if terminal:
            values["completed_at"] = now
        if cancellation_reason is not None:
            values["cancellation_reason"] = cancellation_reason

        result = self.session.execute(
            update(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.id == request_id,
                ApprovalRequestModel.status == expected.value,
            )
            .values(**values)
        )
        if result.rowcount != 1:
            raise ApprovalAlreadyResolvedError(
                str(request_id),
                self._current_status(ApprovalRequestModel, request_id) or "unknown",
            )

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_request(
        self,
        request_id: UUID,
        acting_user_id: UUID,
        reason: str | None = None,
    ) -> ApprovalRequest:
        """Requester withdraws an active request; the document returns to DRAFT."""
        with LogContext.bind(request_id=str(request_id), actor_id=str(acting_user_id)):
            model = self._load_request(request_id, lock=True)
            current = ApprovalStatus(model.status)
            if current in TERMINAL_APPROVAL_STATUSES:
                raise ApprovalAlreadyResolvedError(str(request_id), current.value)
            if model.requested_by != acting_user_id:
                raise UnauthorizedActorError(str(acting_user_id), str(request_id), "cancel")

            target = TargetRef(TargetType(model.target_type), model.target_id)
            now = self._clock.now()
            with atomic_unit(self.session, "cancel_request", {"request_id": str(request_id)}):
                self._swap_request_status(
                    request_id,
                    current,
                    ApprovalStatus.CANCELLED,
                    acting_user_id,
                    now,
                    cancellation_reason=reason,
                )
                self._adapter.set_status(
                    target,
                    DOCUMENT_STATUS_FOR_REQUEST[ApprovalStatus.CANCELLED],
                    acting_user_id,
                )

            logger.info(
                "approval_request_cancelled",
                extra={"from_status": current.value, "reason": reason},
            )
            return self.get_request(request_id)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _notify_outcome(
        self,
        requester_id: UUID,
        target: TargetRef,
        document: TargetDocument | None,
        outcome: ApprovalStatus,
    ) -> None:
        number = document.document_number if document is not None else str(target.target_id)
        label = "Quote" if target.target_type == TargetType.QUOTE else "Purchase order"
        if outcome == ApprovalStatus.APPROVED:
            notification_type = NotificationType.APPROVAL_COMPLETED
            title = "Approval completed"
            message = f"{label} {number} has been approved."
        else:
            notification_type = NotificationType.APPROVAL_REJECTED
            title = "Approval rejected"
            message = f"{label} {number} has been rejected."

        link_template = self._notification_links.get(target.target_type)
        link = None
        if link_template:
            link = link_template.format(
                target_id=target.target_id,
                target_type=target.target_type.value,
            )

        notification = NotificationMessage(
            recipient_id=requester_id,
            notification_type=notification_type,
            title=title,
            message=message,
            link=link,
        )
        try:
            self._sink.enqueue(notification)
        except Exception:
            # Delivery is best effort; the decision is already recorded.
            logger.warning(
                "notification_delivery_failed",
                extra={
                    "recipient_id": str(requester_id),
                    "notification_type": notification_type.value,
                },
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        request = self._selector.get_request(request_id)
        if request is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        return request

    def get_active_request_for_target(self, target: TargetRef) -> ApprovalRequest | None:
        return self._selector.get_active_request_for_target(target)

    def get_history(self, request_id: UUID) -> list[StepRecord]:
        """Step records in step order, annotated with approver display names."""
        self._load_request(request_id)
        return self._selector.get_history(request_id)

    def get_pending_tasks_for(self, user_id: UUID) -> list[PendingTask]:
        """Step records awaiting ``user_id`` (directly, by role, or by department).

        ACTIONABLE mode lists only steps the user can decide now;
        ALL_PENDING also lists later steps, flagged ``actionable=False``.
        Terminal requests never appear.
        """
        principals = self._directory.principals_for(user_id)
        tasks = self._selector.pending_tasks_for(principals, self._task_list_mode)
        if not tasks:
            return []

        documents: dict[UUID, TargetDocument] = {}
        for target_type in TargetType:
            ids = {t.target.target_id for t in tasks if t.target.target_type == target_type}
            documents.update(self._adapter.get_documents(target_type, ids))

        names: dict[UUID, str] = {}
        enriched = []
        for task in tasks:
            if task.requested_by not in names:
                names[task.requested_by] = self._directory.display_name(
                    ApproverRef.user(task.requested_by)
                )
            document = documents.get(task.target.target_id)
            enriched.append(
                replace(
                    task,
                    requester_name=names[task.requested_by],
                    document_number=document.document_number if document else None,
                    total_amount=document.total_amount if document else None,
                )
            )
        return enriched
