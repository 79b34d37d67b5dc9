"""
Tests for WorkflowEngine -- the approval request state machine.

Covers:
- submit_for_approval(): step record snapshot, document goes PENDING,
  unusable templates, non-submittable documents, duplicate active requests
- decide(): strict sequence, IN_PROGRESS after the first approval,
  completion, rejection short-circuit with mandatory comment, SKIP,
  authorization by user / role / department, terminal-state refusal,
  compare-and-swap conflicts rolled back as a unit, failed document
  writes leaving no partial request
- cancel_request(): requester-only, document returns to DRAFT
- Notifications: outcome messages, failures never undo a decision
- Reads: history with approver names, task lists in both modes
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError

from approval_kernel.domain.approval import (
    ApprovalDecision,
    ApprovalStatus,
    ApproverRef,
    DocumentStatus,
    FlowStepSpec,
    NotificationType,
    StepStatus,
    TargetRef,
    TargetType,
    TaskListMode,
)
from approval_kernel.exceptions import (
    ApprovalAlreadyResolvedError,
    ApprovalRequestNotFoundError,
    DuplicateApprovalRequestError,
    InvalidTemplateError,
    OutOfSequenceError,
    RejectionCommentRequiredError,
    StepAlreadyDecidedError,
    StepNotSkippableError,
    StepRecordNotFoundError,
    TargetDocumentNotFoundError,
    TargetNotSubmittableError,
    TemplateNotFoundError,
    UnauthorizedActorError,
    UnauthorizedApproverError,
)
from approval_kernel.models.approval import ApprovalRequestModel, StepRecordModel
from approval_kernel.models.document import QuoteModel
from approval_kernel.models.flow_template import FlowTemplateModel
from approval_kernel.services.notification_service import NotificationService
from approval_kernel.services.workflow_engine import WorkflowEngine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _db_step_status(session, step_record_id) -> str:
    return session.execute(
        select(StepRecordModel.status).where(StepRecordModel.id == step_record_id)
    ).scalar_one()


def _db_request_status(session, request_id) -> str:
    return session.execute(
        select(ApprovalRequestModel.status).where(ApprovalRequestModel.id == request_id)
    ).scalar_one()


def _engine(session, document_adapter, directory, deterministic_clock, sink, **kwargs):
    return WorkflowEngine(
        session,
        adapter=document_adapter,
        directory=directory,
        notification_sink=sink,
        clock=deterministic_clock,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quote(make_quote) -> TargetRef:
    return make_quote(quote_number="Q-TEST-1", total_amount=Decimal("2500.00"))


@pytest.fixture
def submitted(workflow_engine, two_step_template, quote, requester):
    """A two-step request awaiting approver A."""
    return workflow_engine.submit_for_approval(
        two_step_template.template_id, quote, requester, notes="please review",
    )


@pytest.fixture
def sink_engine(session, document_adapter, directory, deterministic_clock, recording_sink):
    return _engine(session, document_adapter, directory, deterministic_clock, recording_sink)


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


class TestSubmitForApproval:
    def test_creates_pending_request_with_step_snapshot(
        self, submitted, two_step_template, approver_a, approver_b, requester, quote,
    ):
        assert submitted.status == ApprovalStatus.PENDING
        assert submitted.requested_by == requester
        assert submitted.target == quote
        assert submitted.notes == "please review"
        assert submitted.current_step == 1
        assert submitted.completed_at is None
        assert [s.step_order for s in submitted.steps] == [1, 2]
        assert [s.approver for s in submitted.steps] == [
            ApproverRef.user(approver_a),
            ApproverRef.user(approver_b),
        ]
        assert all(s.status == StepStatus.PENDING for s in submitted.steps)
        assert submitted.steps[0].approver_name == "Alice Approver"

    def test_document_becomes_pending(self, submitted, document_adapter, quote, requester):
        document = document_adapter.get_document(quote)
        assert document.status == DocumentStatus.PENDING

    def test_active_request_lookup(self, submitted, workflow_engine, quote):
        active = workflow_engine.get_active_request_for_target(quote)
        assert active is not None
        assert active.request_id == submitted.request_id

    def test_unknown_template(self, workflow_engine, quote, requester):
        with pytest.raises(TemplateNotFoundError):
            workflow_engine.submit_for_approval(uuid4(), quote, requester)

    def test_template_without_steps_is_rejected(
        self, session, workflow_engine, document_adapter, quote, requester, test_actor_id,
    ):
        empty = FlowTemplateModel(
            template_code="EMPTY-FLOW",
            name="Empty",
            target_type=TargetType.QUOTE.value,
            is_active=True,
            is_deleted=False,
            created_by_id=test_actor_id,
        )
        session.add(empty)
        session.flush()

        with pytest.raises(InvalidTemplateError) as exc_info:
            workflow_engine.submit_for_approval(empty.id, quote, requester)

        assert "no active steps" in exc_info.value.reason
        assert workflow_engine.get_active_request_for_target(quote) is None
        assert document_adapter.get_document(quote).status == DocumentStatus.DRAFT

    def test_inactive_template(
        self, template_service, workflow_engine, quote, requester, approver_a, test_actor_id,
    ):
        template = template_service.create_template(
            template_code="INACTIVE-FLOW",
            name="Inactive",
            target_type=TargetType.QUOTE,
            steps=[FlowStepSpec(step_order=1, approver=ApproverRef.user(approver_a))],
            actor_id=test_actor_id,
            is_active=False,
        )
        with pytest.raises(InvalidTemplateError, match="inactive"):
            workflow_engine.submit_for_approval(template.template_id, quote, requester)

    def test_target_type_must_match_template(
        self, make_template, workflow_engine, quote, requester, approver_a,
    ):
        template = make_template(
            [ApproverRef.user(approver_a)], target_type=TargetType.PURCHASE_ORDER,
        )
        with pytest.raises(InvalidTemplateError, match="purchase_order"):
            workflow_engine.submit_for_approval(template.template_id, quote, requester)

    def test_missing_document(self, workflow_engine, two_step_template, requester):
        with pytest.raises(TargetDocumentNotFoundError):
            workflow_engine.submit_for_approval(
                two_step_template.template_id,
                TargetRef(TargetType.QUOTE, uuid4()),
                requester,
            )

    @pytest.mark.parametrize("status", ["pending", "approved", "expired"])
    def test_document_status_must_be_submittable(
        self, workflow_engine, two_step_template, make_quote, requester, status,
    ):
        target = make_quote(status=status)
        with pytest.raises(TargetNotSubmittableError) as exc_info:
            workflow_engine.submit_for_approval(two_step_template.template_id, target, requester)
        assert exc_info.value.status == status

    def test_duplicate_active_request(
        self, session, document_adapter, directory, deterministic_clock, database_sink,
        two_step_template, quote, requester,
    ):
        engine = _engine(
            session, document_adapter, directory, deterministic_clock, database_sink,
            submittable_statuses={DocumentStatus.DRAFT, DocumentStatus.PENDING},
        )
        first = engine.submit_for_approval(two_step_template.template_id, quote, requester)

        with pytest.raises(DuplicateApprovalRequestError) as exc_info:
            engine.submit_for_approval(two_step_template.template_id, quote, requester)

        assert exc_info.value.existing_request_id == str(first.request_id)

    def test_purchase_order_submission(
        self, make_template, workflow_engine, make_purchase_order, requester, approver_a,
        document_adapter,
    ):
        template = make_template(
            [ApproverRef.department("procurement")], target_type=TargetType.PURCHASE_ORDER,
        )
        po = make_purchase_order()
        request = workflow_engine.submit_for_approval(template.template_id, po, requester)
        assert request.target.target_type == TargetType.PURCHASE_ORDER
        assert document_adapter.get_document(po).status == DocumentStatus.PENDING

    def test_logs_submission(self, captured_logs, submitted):
        records = [r for r in captured_logs() if r["message"] == "approval_request_submitted"]
        assert len(records) == 1
        assert records[0]["request_id"] == str(submitted.request_id)
        assert records[0]["step_count"] == 2
        assert records[0]["document_number"] == "Q-TEST-1"


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


class TestSequentialApproval:
    def test_first_approval_moves_to_in_progress(
        self, workflow_engine, submitted, approver_a, document_adapter, quote,
    ):
        step1 = submitted.step(1)
        result = workflow_engine.decide(
            submitted.request_id, step1.step_record_id, approver_a,
            ApprovalDecision.APPROVE, comments="fine",
        )

        assert result.status == ApprovalStatus.IN_PROGRESS
        assert result.current_step == 2
        decided = result.step(1)
        assert decided.status == StepStatus.APPROVED
        assert decided.approved_at is not None
        assert decided.rejected_at is None
        assert decided.comments == "fine"
        assert decided.decided_by_id == approver_a
        assert result.step(2).status == StepStatus.PENDING
        assert document_adapter.get_document(quote).status == DocumentStatus.PENDING

    def test_all_steps_approved_completes_request(
        self, workflow_engine, submitted, approver_a, approver_b, document_adapter, quote,
        deterministic_clock,
    ):
        workflow_engine.decide(
            submitted.request_id, submitted.step(1).step_record_id, approver_a,
            ApprovalDecision.APPROVE,
        )
        deterministic_clock.advance(60)
        result = workflow_engine.decide(
            submitted.request_id, submitted.step(2).step_record_id, approver_b,
            ApprovalDecision.APPROVE,
        )

        assert result.status == ApprovalStatus.APPROVED
        assert result.completed_at is not None
        assert result.current_step is None
        assert all(s.status == StepStatus.APPROVED for s in result.steps)
        assert document_adapter.get_document(quote).status == DocumentStatus.APPROVED
        assert workflow_engine.get_active_request_for_target(quote) is None

    def test_out_of_sequence_is_refused(
        self, session, workflow_engine, submitted, approver_b,
    ):
        step2 = submitted.step(2)
        with pytest.raises(OutOfSequenceError) as exc_info:
            workflow_engine.decide(
                submitted.request_id, step2.step_record_id, approver_b,
                ApprovalDecision.APPROVE,
            )

        assert exc_info.value.step_order == 2
        assert exc_info.value.expected_step_order == 1
        assert _db_step_status(session, step2.step_record_id) == "pending"
        assert _db_request_status(session, submitted.request_id) == "pending"

    def test_decided_step_cannot_be_decided_again(
        self, workflow_engine, submitted, approver_a,
    ):
        step1 = submitted.step(1)
        workflow_engine.decide(
            submitted.request_id, step1.step_record_id, approver_a, ApprovalDecision.APPROVE,
        )
        with pytest.raises(StepAlreadyDecidedError):
            workflow_engine.decide(
                submitted.request_id, step1.step_record_id, approver_a,
                ApprovalDecision.APPROVE,
            )

    def test_unknown_step_record(self, workflow_engine, submitted, approver_a):
        with pytest.raises(StepRecordNotFoundError):
            workflow_engine.decide(
                submitted.request_id, uuid4(), approver_a, ApprovalDecision.APPROVE,
            )

    def test_step_record_of_another_request(
        self, workflow_engine, submitted, two_step_template, make_quote, requester, approver_a,
    ):
        other = workflow_engine.submit_for_approval(
            two_step_template.template_id, make_quote(), requester,
        )
        with pytest.raises(StepRecordNotFoundError):
            workflow_engine.decide(
                submitted.request_id, other.step(1).step_record_id, approver_a,
                ApprovalDecision.APPROVE,
            )

    def test_unknown_request(self, workflow_engine, approver_a):
        with pytest.raises(ApprovalRequestNotFoundError):
            workflow_engine.decide(uuid4(), uuid4(), approver_a, ApprovalDecision.APPROVE)

    def test_logs_decision_and_completion(
        self, captured_logs, workflow_engine, make_template, make_quote, requester, approver_a,
    ):
        template = make_template([ApproverRef.user(approver_a)])
        request = workflow_engine.submit_for_approval(template.template_id, make_quote(), requester)
        workflow_engine.decide(
            request.request_id, request.step(1).step_record_id, approver_a,
            ApprovalDecision.APPROVE,
        )

        messages = {r["message"]: r for r in captured_logs()}
        decided = messages["approval_step_decided"]
        assert decided["from_status"] == "pending"
        assert decided["to_status"] == "approved"
        assert decided["actor_id"] == str(approver_a)
        assert messages["approval_request_completed"]["total_steps"] == 1


class TestRejection:
    def test_rejection_requires_comment(self, session, workflow_engine, submitted, approver_a):
        step1 = submitted.step(1)
        for comments in (None, "", "   "):
            with pytest.raises(RejectionCommentRequiredError):
                workflow_engine.decide(
                    submitted.request_id, step1.step_record_id, approver_a,
                    ApprovalDecision.REJECT, comments=comments,
                )
        assert _db_step_status(session, step1.step_record_id) == "pending"

    def test_rejection_short_circuits_request(
        self, workflow_engine, submitted, approver_a, document_adapter, quote,
    ):
        result = workflow_engine.decide(
            submitted.request_id, submitted.step(1).step_record_id, approver_a,
            ApprovalDecision.REJECT, comments="price too low",
        )

        assert result.status == ApprovalStatus.REJECTED
        assert result.completed_at is not None
        assert result.current_step is None
        assert result.step(1).status == StepStatus.REJECTED
        assert result.step(1).rejected_at is not None
        assert result.step(1).approved_at is None
        assert result.step(1).comments == "price too low"
        assert result.step(2).status == StepStatus.PENDING
        assert document_adapter.get_document(quote).status == DocumentStatus.REJECTED

    def test_rejection_at_later_step(
        self, workflow_engine, submitted, approver_a, approver_b,
    ):
        workflow_engine.decide(
            submitted.request_id, submitted.step(1).step_record_id, approver_a,
            ApprovalDecision.APPROVE,
        )
        result = workflow_engine.decide(
            submitted.request_id, submitted.step(2).step_record_id, approver_b,
            ApprovalDecision.REJECT, comments="no budget",
        )
        assert result.status == ApprovalStatus.REJECTED
        assert result.step(1).status == StepStatus.APPROVED

    def test_terminal_request_refuses_further_decisions(
        self, workflow_engine, submitted, approver_a, approver_b,
    ):
        workflow_engine.decide(
            submitted.request_id, submitted.step(1).step_record_id, approver_a,
            ApprovalDecision.REJECT, comments="no",
        )
        with pytest.raises(ApprovalAlreadyResolvedError) as exc_info:
            workflow_engine.decide(
                submitted.request_id, submitted.step(2).step_record_id, approver_b,
                ApprovalDecision.APPROVE,
            )
        assert exc_info.value.status == "rejected"

    def test_rejected_document_can_be_resubmitted(
        self, workflow_engine, submitted, two_step_template, approver_a, quote, requester,
    ):
        workflow_engine.decide(
            submitted.request_id, submitted.step(1).step_record_id, approver_a,
            ApprovalDecision.REJECT, comments="revise",
        )
        again = workflow_engine.submit_for_approval(
            two_step_template.template_id, quote, requester,
        )
        assert again.request_id != submitted.request_id
        assert again.status == ApprovalStatus.PENDING


class TestSkip:
    def test_skip_advances_like_approve(
        self, workflow_engine, make_template, make_quote, requester, approver_a, approver_b,
    ):
        template = make_template(
            [ApproverRef.user(approver_a), ApproverRef.user(approver_b)], skippable=(1,),
        )
        request = workflow_engine.submit_for_approval(template.template_id, make_quote(), requester)

        result = workflow_engine.decide(
            request.request_id, request.step(1).step_record_id, approver_a,
            ApprovalDecision.SKIP,
        )

        assert result.status == ApprovalStatus.IN_PROGRESS
        assert result.step(1).status == StepStatus.APPROVED
        assert result.step(1).skipped is True
        assert result.current_step == 2

    def test_mandatory_step_cannot_be_skipped(self, workflow_engine, submitted, approver_a):
        with pytest.raises(StepNotSkippableError):
            workflow_engine.decide(
                submitted.request_id, submitted.step(1).step_record_id, approver_a,
                ApprovalDecision.SKIP,
            )


class TestAuthorization:
    def test_other_user_cannot_decide(self, workflow_engine, submitted, approver_b):
        with pytest.raises(UnauthorizedApproverError) as exc_info:
            workflow_engine.decide(
                submitted.request_id, submitted.step(1).step_record_id, approver_b,
                ApprovalDecision.APPROVE,
            )
        assert exc_info.value.actor_id == str(approver_b)

    def test_role_holder_can_decide(
        self, workflow_engine, make_template, make_quote, requester, approver_a, approver_b,
    ):
        template = make_template([ApproverRef.role("sales_manager")])
        request = workflow_engine.submit_for_approval(template.template_id, make_quote(), requester)
        step_id = request.step(1).step_record_id

        with pytest.raises(UnauthorizedApproverError):
            workflow_engine.decide(request.request_id, step_id, approver_b, ApprovalDecision.APPROVE)

        result = workflow_engine.decide(
            request.request_id, step_id, approver_a, ApprovalDecision.APPROVE,
        )
        assert result.status == ApprovalStatus.APPROVED

    def test_department_member_can_decide(
        self, workflow_engine, make_template, make_quote, requester, approver_b,
    ):
        template = make_template([ApproverRef.department("management")])
        request = workflow_engine.submit_for_approval(template.template_id, make_quote(), requester)
        result = workflow_engine.decide(
            request.request_id, request.step(1).step_record_id, approver_b,
            ApprovalDecision.APPROVE,
        )
        assert result.status == ApprovalStatus.APPROVED

    def test_inactive_profile_loses_role_authority(
        self, workflow_engine, make_template, make_quote, make_user, requester,
    ):
        former = make_user("Former Manager", roles=("sales_manager",), is_active=False)
        template = make_template([ApproverRef.role("sales_manager")])
        request = workflow_engine.submit_for_approval(template.template_id, make_quote(), requester)
        with pytest.raises(UnauthorizedApproverError):
            workflow_engine.decide(
                request.request_id, request.step(1).step_record_id, former,
                ApprovalDecision.APPROVE,
            )


class TestConcurrentDecisions:
    def test_step_already_decided_by_concurrent_writer(
        self, session, workflow_engine, submitted, approver_a, deterministic_clock, monkeypatch,
    ):
        step1 = submitted.step(1)
        original_authorize = workflow_engine._authorize

        def authorize_then_lose_race(record, acting_user_id):
            original_authorize(record, acting_user_id)
            session.execute(
                update(StepRecordModel.__table__)
                .where(StepRecordModel.__table__.c.id == step1.step_record_id)
                .values(status="approved", approved_at=deterministic_clock.now())
            )

        monkeypatch.setattr(workflow_engine, "_authorize", authorize_then_lose_race)

        with pytest.raises(StepAlreadyDecidedError) as exc_info:
            workflow_engine.decide(
                submitted.request_id, step1.step_record_id, approver_a,
                ApprovalDecision.APPROVE,
            )

        assert exc_info.value.current_status == "approved"
        assert _db_request_status(session, submitted.request_id) == "pending"

    def test_request_resolved_concurrently_rolls_back_step(
        self, session, workflow_engine, submitted, approver_a, document_adapter, quote,
        monkeypatch, captured_logs,
    ):
        step1 = submitted.step(1)
        original_authorize = workflow_engine._authorize

        def authorize_then_lose_race(record, acting_user_id):
            original_authorize(record, acting_user_id)
            session.execute(
                update(ApprovalRequestModel.__table__)
                .where(ApprovalRequestModel.__table__.c.id == submitted.request_id)
                .values(status="cancelled")
            )

        monkeypatch.setattr(workflow_engine, "_authorize", authorize_then_lose_race)

        with pytest.raises(ApprovalAlreadyResolvedError) as exc_info:
            workflow_engine.decide(
                submitted.request_id, step1.step_record_id, approver_a,
                ApprovalDecision.APPROVE,
            )

        assert exc_info.value.status == "cancelled"
        # The step CAS landed inside the unit and must have been undone
        assert _db_step_status(session, step1.step_record_id) == "pending"
        assert document_adapter.get_document(quote).status == DocumentStatus.PENDING
        rolled_back = [r for r in captured_logs() if r["message"] == "atomic_unit_rolled_back"]
        assert rolled_back and rolled_back[0]["operation"] == "decide"


class TestFailedUnits:
    def test_document_deleted_before_final_approval(
        self, session, workflow_engine, submitted, approver_a, approver_b, quote,
    ):
        workflow_engine.decide(
            submitted.request_id, submitted.step(1).step_record_id, approver_a,
            ApprovalDecision.APPROVE,
        )
        session.execute(
            update(QuoteModel.__table__)
            .where(QuoteModel.__table__.c.id == quote.target_id)
            .values(is_deleted=True)
        )

        with pytest.raises(TargetDocumentNotFoundError):
            workflow_engine.decide(
                submitted.request_id, submitted.step(2).step_record_id, approver_b,
                ApprovalDecision.APPROVE,
            )

        assert _db_request_status(session, submitted.request_id) == "in_progress"
        assert _db_step_status(session, submitted.step(1).step_record_id) == "approved"
        assert _db_step_status(session, submitted.step(2).step_record_id) == "pending"

    def test_submission_leaves_no_rows_when_document_write_fails(
        self, session, workflow_engine, document_adapter, two_step_template, quote, requester,
        monkeypatch,
    ):
        def fail_status_write(target, status, actor_id):
            raise OperationalError("UPDATE quotes", {}, Exception("connection lost"))

        monkeypatch.setattr(document_adapter, "set_status", fail_status_write)

        with pytest.raises(OperationalError):
            workflow_engine.submit_for_approval(two_step_template.template_id, quote, requester)

        request_rows = session.execute(
            select(func.count()).select_from(ApprovalRequestModel)
            .where(ApprovalRequestModel.target_id == quote.target_id)
        ).scalar_one()
        step_rows = session.execute(
            select(func.count()).select_from(StepRecordModel)
        ).scalar_one()
        assert (request_rows, step_rows) == (0, 0)
        assert workflow_engine.get_active_request_for_target(quote) is None
        assert document_adapter.get_document(quote).status == DocumentStatus.DRAFT


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestCancelRequest:
    def test_requester_cancels(
        self, session, workflow_engine, submitted, requester, document_adapter, quote,
    ):
        result = workflow_engine.cancel_request(submitted.request_id, requester, reason="wrong customer")

        assert result.status == ApprovalStatus.CANCELLED
        assert result.completed_at is not None
        assert result.current_step is None
        assert document_adapter.get_document(quote).status == DocumentStatus.DRAFT
        reason = session.execute(
            select(ApprovalRequestModel.cancellation_reason)
            .where(ApprovalRequestModel.id == submitted.request_id)
        ).scalar_one()
        assert reason == "wrong customer"

    def test_cancel_after_partial_approval(
        self, workflow_engine, submitted, requester, approver_a,
    ):
        workflow_engine.decide(
            submitted.request_id, submitted.step(1).step_record_id, approver_a,
            ApprovalDecision.APPROVE,
        )
        result = workflow_engine.cancel_request(submitted.request_id, requester)
        assert result.status == ApprovalStatus.CANCELLED

    def test_only_requester_may_cancel(self, workflow_engine, submitted, approver_a):
        with pytest.raises(UnauthorizedActorError):
            workflow_engine.cancel_request(submitted.request_id, approver_a)

    def test_cannot_cancel_terminal_request(self, workflow_engine, submitted, requester):
        workflow_engine.cancel_request(submitted.request_id, requester)
        with pytest.raises(ApprovalAlreadyResolvedError):
            workflow_engine.cancel_request(submitted.request_id, requester)

    def test_cancelled_request_refuses_decisions(
        self, workflow_engine, submitted, requester, approver_a,
    ):
        workflow_engine.cancel_request(submitted.request_id, requester)
        with pytest.raises(ApprovalAlreadyResolvedError):
            workflow_engine.decide(
                submitted.request_id, submitted.step(1).step_record_id, approver_a,
                ApprovalDecision.APPROVE,
            )

    def test_cancelled_document_can_be_resubmitted(
        self, workflow_engine, submitted, two_step_template, requester, quote,
    ):
        workflow_engine.cancel_request(submitted.request_id, requester)
        again = workflow_engine.submit_for_approval(two_step_template.template_id, quote, requester)
        assert again.status == ApprovalStatus.PENDING


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class TestOutcomeNotifications:
    def test_completion_is_stored_for_requester(
        self, session, workflow_engine, make_template, make_quote, requester, approver_a,
    ):
        template = make_template([ApproverRef.user(approver_a)])
        target = make_quote(quote_number="Q-NOTIFY")
        request = workflow_engine.submit_for_approval(template.template_id, target, requester)
        workflow_engine.decide(
            request.request_id, request.step(1).step_record_id, approver_a,
            ApprovalDecision.APPROVE,
        )

        inbox = NotificationService(session).list_for_user(requester)
        assert len(inbox) == 1
        assert inbox[0].notification_type == NotificationType.APPROVAL_COMPLETED
        assert inbox[0].message == "Quote Q-NOTIFY has been approved."
        assert inbox[0].link == f"/quotes/{target.target_id}"
        assert inbox[0].is_read is False

    def test_rejection_notifies_requester(
        self, sink_engine, recording_sink, make_template, make_purchase_order, requester,
        approver_a,
    ):
        template = make_template(
            [ApproverRef.user(approver_a)], target_type=TargetType.PURCHASE_ORDER,
        )
        po = make_purchase_order(po_number="PO-77")
        request = sink_engine.submit_for_approval(template.template_id, po, requester)
        sink_engine.decide(
            request.request_id, request.step(1).step_record_id, approver_a,
            ApprovalDecision.REJECT, comments="over budget",
        )

        assert len(recording_sink.messages) == 1
        message = recording_sink.messages[0]
        assert message.recipient_id == requester
        assert message.notification_type == NotificationType.APPROVAL_REJECTED
        assert message.message == "Purchase order PO-77 has been rejected."
        assert message.link == f"/purchase-orders/{po.target_id}"

    def test_intermediate_approval_sends_nothing(
        self, sink_engine, recording_sink, two_step_template, quote, requester, approver_a,
    ):
        request = sink_engine.submit_for_approval(two_step_template.template_id, quote, requester)
        sink_engine.decide(
            request.request_id, request.step(1).step_record_id, approver_a,
            ApprovalDecision.APPROVE,
        )
        assert recording_sink.messages == []

    def test_delivery_failure_does_not_undo_decision(
        self, session, document_adapter, directory, deterministic_clock, failing_sink,
        make_template, make_quote, requester, approver_a, captured_logs,
    ):
        sink = failing_sink
        engine = _engine(session, document_adapter, directory, deterministic_clock, sink)
        template = make_template([ApproverRef.user(approver_a)])
        target = make_quote()
        request = engine.submit_for_approval(template.template_id, target, requester)

        result = engine.decide(
            request.request_id, request.step(1).step_record_id, approver_a,
            ApprovalDecision.APPROVE,
        )

        assert result.status == ApprovalStatus.APPROVED
        assert sink.attempts == 1
        assert document_adapter.get_document(target).status == DocumentStatus.APPROVED
        failures = [r for r in captured_logs() if r["message"] == "notification_delivery_failed"]
        assert len(failures) == 1
        assert failures[0]["level"] == "WARNING"
        assert failures[0]["exc_code"] == "NOTIFICATION_DELIVERY_FAILED"

    def test_custom_link_templates(
        self, session, document_adapter, directory, deterministic_clock, recording_sink,
        make_template, make_quote, requester, approver_a,
    ):
        engine = _engine(
            session, document_adapter, directory, deterministic_clock, recording_sink,
            notification_links={TargetType.QUOTE: "https://crm.example.com/{target_type}/{target_id}"},
        )
        template = make_template([ApproverRef.user(approver_a)])
        target = make_quote()
        request = engine.submit_for_approval(template.template_id, target, requester)
        engine.decide(
            request.request_id, request.step(1).step_record_id, approver_a,
            ApprovalDecision.APPROVE,
        )
        assert recording_sink.messages[0].link == f"https://crm.example.com/quote/{target.target_id}"


# ---------------------------------------------------------------------------
# Template snapshot isolation
# ---------------------------------------------------------------------------


class TestTemplateSnapshot:
    def test_template_edit_does_not_touch_open_request(
        self, workflow_engine, template_service, submitted, two_step_template, approver_a,
        make_user, test_actor_id,
    ):
        newcomer = make_user("Nina Newcomer")
        template_service.update_template(
            two_step_template.template_id,
            name="Rewritten",
            target_type=TargetType.QUOTE,
            steps=[FlowStepSpec(step_order=1, approver=ApproverRef.user(newcomer))],
            actor_id=test_actor_id,
        )

        request = workflow_engine.get_request(submitted.request_id)
        assert len(request.steps) == 2
        assert request.step(1).approver == ApproverRef.user(approver_a)

        result = workflow_engine.decide(
            submitted.request_id, request.step(1).step_record_id, approver_a,
            ApprovalDecision.APPROVE,
        )
        assert result.status == ApprovalStatus.IN_PROGRESS

    def test_template_delete_does_not_touch_open_request(
        self, workflow_engine, template_service, submitted, two_step_template, test_actor_id,
    ):
        template_service.delete_template(two_step_template.template_id, test_actor_id)
        request = workflow_engine.get_request(submitted.request_id)
        assert request.status == ApprovalStatus.PENDING
        assert len(request.steps) == 2


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestHistory:
    def test_history_in_step_order_with_names(
        self, workflow_engine, submitted, approver_a,
    ):
        workflow_engine.decide(
            submitted.request_id, submitted.step(1).step_record_id, approver_a,
            ApprovalDecision.APPROVE, comments="ok",
        )
        history = workflow_engine.get_history(submitted.request_id)
        assert [h.step_order for h in history] == [1, 2]
        assert [h.approver_name for h in history] == ["Alice Approver", "Bob Approver"]
        assert history[0].comments == "ok"
        assert history[1].status == StepStatus.PENDING

    def test_history_of_unknown_request(self, workflow_engine):
        with pytest.raises(ApprovalRequestNotFoundError):
            workflow_engine.get_history(uuid4())


class TestPendingTasks:
    def test_actionable_mode_lists_current_step_only(
        self, workflow_engine, submitted, approver_a, approver_b, quote,
    ):
        tasks = workflow_engine.get_pending_tasks_for(approver_a)
        assert len(tasks) == 1
        task = tasks[0]
        assert task.request_id == submitted.request_id
        assert task.step_order == 1
        assert task.actionable is True
        assert task.target == quote
        assert task.requester_name == "Rita Requester"
        assert task.document_number == "Q-TEST-1"
        assert task.total_amount == Decimal("2500.00")

        assert workflow_engine.get_pending_tasks_for(approver_b) == []

    def test_next_approver_sees_task_after_first_approval(
        self, workflow_engine, submitted, approver_a, approver_b,
    ):
        workflow_engine.decide(
            submitted.request_id, submitted.step(1).step_record_id, approver_a,
            ApprovalDecision.APPROVE,
        )
        assert workflow_engine.get_pending_tasks_for(approver_a) == []
        tasks = workflow_engine.get_pending_tasks_for(approver_b)
        assert [t.step_order for t in tasks] == [2]

    def test_all_pending_mode_flags_future_steps(
        self, session, document_adapter, directory, deterministic_clock, database_sink,
        submitted, approver_b,
    ):
        engine = _engine(
            session, document_adapter, directory, deterministic_clock, database_sink,
            task_list_mode=TaskListMode.ALL_PENDING,
        )
        tasks = engine.get_pending_tasks_for(approver_b)
        assert len(tasks) == 1
        assert tasks[0].step_order == 2
        assert tasks[0].actionable is False

    def test_terminal_requests_disappear(
        self, workflow_engine, submitted, approver_a, approver_b,
    ):
        workflow_engine.decide(
            submitted.request_id, submitted.step(1).step_record_id, approver_a,
            ApprovalDecision.REJECT, comments="no",
        )
        assert workflow_engine.get_pending_tasks_for(approver_b) == []

    def test_role_tasks_newest_first(
        self, workflow_engine, make_template, make_quote, requester, approver_a,
        deterministic_clock,
    ):
        template = make_template([ApproverRef.role("sales_manager")])
        older = workflow_engine.submit_for_approval(template.template_id, make_quote(), requester)
        deterministic_clock.advance(3600)
        newer = workflow_engine.submit_for_approval(template.template_id, make_quote(), requester)

        tasks = workflow_engine.get_pending_tasks_for(approver_a)
        assert [t.request_id for t in tasks] == [newer.request_id, older.request_id]

    def test_user_without_tasks(self, workflow_engine, make_user):
        assert workflow_engine.get_pending_tasks_for(make_user("Idle User")) == []
