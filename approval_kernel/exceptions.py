"""
Typed Exception Hierarchy for the Approval Kernel.

Every error the kernel raises has a typed class, a machine-readable ``code``
class attribute, and structured attributes carrying the data a caller needs
to react without parsing the message.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidTemplateError
    |   +-- StepOrderError
    |   +-- RejectionCommentRequiredError
    |   +-- StepNotSkippableError
    |
    +-- NotFoundError
    |   +-- TemplateNotFoundError
    |   +-- ApprovalRequestNotFoundError
    |   +-- StepRecordNotFoundError
    |   +-- TargetDocumentNotFoundError
    |
    +-- WorkflowStateError
    |   +-- OutOfSequenceError
    |   +-- ApprovalAlreadyResolvedError
    |   +-- InvalidApprovalTransitionError
    |   +-- DuplicateApprovalRequestError
    |   +-- TargetNotSubmittableError
    |
    +-- AuthorizationError
    |   +-- UnauthorizedApproverError
    |   +-- UnauthorizedActorError
    |
    +-- ConcurrencyError
    |   +-- StepAlreadyDecidedError
    |
    +-- PartialWriteError
    |
    +-- NotificationDeliveryError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|---------------------------------------
Validation      | VALIDATION_ERROR              | Missing name / no steps / bad input
                | INVALID_TEMPLATE              | Template unusable for submission
                | STEP_ORDER_NOT_CONTIGUOUS     | step_order values are not 1..N
                | REJECTION_COMMENT_REQUIRED    | REJECT without a comment
                | STEP_NOT_SKIPPABLE            | SKIP on a step frozen as mandatory
----------------|-------------------------------|---------------------------------------
Not found       | TEMPLATE_NOT_FOUND            | Template absent or soft-deleted
                | APPROVAL_REQUEST_NOT_FOUND    | Request absent or soft-deleted
                | STEP_RECORD_NOT_FOUND         | Step record absent for request
                | TARGET_DOCUMENT_NOT_FOUND     | Quote / PO absent or deleted
----------------|-------------------------------|---------------------------------------
Workflow state  | OUT_OF_SEQUENCE               | Step is not the actionable step
                | APPROVAL_ALREADY_RESOLVED     | Request is terminal
                | INVALID_APPROVAL_TRANSITION   | Lifecycle map forbids the change
                | DUPLICATE_APPROVAL_REQUEST    | Target already has an active request
                | TARGET_NOT_SUBMITTABLE        | Document status forbids submission
----------------|-------------------------------|---------------------------------------
Authorization   | UNAUTHORIZED_APPROVER         | Actor does not match step approver
                | UNAUTHORIZED_ACTOR            | Non-requester tried to withdraw
----------------|-------------------------------|---------------------------------------
Concurrency     | STEP_ALREADY_DECIDED          | Compare-and-swap on step lost
----------------|-------------------------------|---------------------------------------
Fatal           | PARTIAL_WRITE                 | Multi-write unit could not be undone
----------------|-------------------------------|---------------------------------------
Side effect     | NOTIFICATION_DELIVERY_FAILED  | Sink could not enqueue (never escalated)

===============================================================================
HANDLING PATTERNS
===============================================================================

1. User-correctable errors (ValidationError, OutOfSequenceError,
   StepAlreadyDecidedError): re-fetch state and let the user retry.

2. PartialWriteError is FATAL: the kernel could not compensate a partially
   applied multi-write unit.  Do not retry; an operator must reconcile the
   request, step records, and target document using the logged context.

3. Storage errors (``sqlalchemy.exc``) are never wrapped -- they propagate
   unmodified to the caller of the engine operation.
"""


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Validation


class ValidationError(ApprovalKernelError):
    """Malformed input to a template or workflow operation."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, errors: list[str] | tuple[str, ...] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("Validation failed: " + "; ".join(self.errors))


class InvalidTemplateError(ValidationError):
    """Template cannot be used to open an approval request."""

    code: str = "INVALID_TEMPLATE"

    def __init__(self, template_id: str, reason: str):
        self.template_id = template_id
        self.reason = reason
        super().__init__([f"Template {template_id}: {reason}"])


class StepOrderError(ValidationError):
    """step_order values are not exactly 1..N."""

    code: str = "STEP_ORDER_NOT_CONTIGUOUS"

    def __init__(self, step_orders: list[int]):
        self.step_orders = list(step_orders)
        super().__init__(
            [f"step_order must be contiguous from 1, got {self.step_orders}"]
        )


class RejectionCommentRequiredError(ValidationError):
    """A rejection was submitted without a comment."""

    code: str = "REJECTION_COMMENT_REQUIRED"

    def __init__(self, step_record_id: str):
        self.step_record_id = step_record_id
        super().__init__(["comments are required when rejecting"])


class StepNotSkippableError(ValidationError):
    """SKIP was requested for a step that was frozen as mandatory."""

    code: str = "STEP_NOT_SKIPPABLE"

    def __init__(self, step_record_id: str, step_order: int):
        self.step_record_id = step_record_id
        self.step_order = step_order
        super().__init__([f"step {step_order} cannot be skipped"])


# Not found


class NotFoundError(ApprovalKernelError):
    """Base exception for missing or soft-deleted entities."""

    code: str = "NOT_FOUND"


class TemplateNotFoundError(NotFoundError):
    """Flow template does not exist or is soft-deleted."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Flow template not found: {template_id}")


class ApprovalRequestNotFoundError(NotFoundError):
    """Approval request does not exist or is soft-deleted."""

    code: str = "APPROVAL_REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


class StepRecordNotFoundError(NotFoundError):
    """Step record does not exist within the given request."""

    code: str = "STEP_RECORD_NOT_FOUND"

    def __init__(self, request_id: str, step_record_id: str):
        self.request_id = request_id
        self.step_record_id = step_record_id
        super().__init__(
            f"Step record {step_record_id} not found in request {request_id}"
        )


class TargetDocumentNotFoundError(NotFoundError):
    """Target quote / purchase order does not exist or was deleted mid-flow."""

    code: str = "TARGET_DOCUMENT_NOT_FOUND"

    def __init__(self, target_type: str, target_id: str):
        self.target_type = target_type
        self.target_id = target_id
        super().__init__(f"Target document not found: {target_type}:{target_id}")


# Workflow state


class WorkflowStateError(ApprovalKernelError):
    """Base exception for operations the current workflow state forbids."""

    code: str = "WORKFLOW_STATE_ERROR"


class OutOfSequenceError(WorkflowStateError):
    """
    The step is not the current actionable step.

    User-correctable: re-fetch the request and act on ``expected_step_order``.
    """

    code: str = "OUT_OF_SEQUENCE"

    def __init__(
        self,
        request_id: str,
        step_order: int,
        expected_step_order: int | None,
    ):
        self.request_id = request_id
        self.step_order = step_order
        self.expected_step_order = expected_step_order
        super().__init__(
            f"Step {step_order} of request {request_id} is not actionable; "
            f"current step is {expected_step_order}"
        )


class ApprovalAlreadyResolvedError(WorkflowStateError):
    """The approval request has already reached a terminal status."""

    code: str = "APPROVAL_ALREADY_RESOLVED"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(
            f"Approval request {request_id} is already {status}"
        )


class InvalidApprovalTransitionError(WorkflowStateError):
    """The lifecycle map does not allow this status change."""

    code: str = "INVALID_APPROVAL_TRANSITION"

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid approval transition: {from_status} -> {to_status}"
        )


class DuplicateApprovalRequestError(WorkflowStateError):
    """The target document already has an active approval request."""

    code: str = "DUPLICATE_APPROVAL_REQUEST"

    def __init__(self, target_type: str, target_id: str, existing_request_id: str):
        self.target_type = target_type
        self.target_id = target_id
        self.existing_request_id = existing_request_id
        super().__init__(
            f"{target_type}:{target_id} already has active approval request "
            f"{existing_request_id}"
        )


class TargetNotSubmittableError(WorkflowStateError):
    """The target document's status does not allow submission."""

    code: str = "TARGET_NOT_SUBMITTABLE"

    def __init__(self, target_type: str, target_id: str, status: str):
        self.target_type = target_type
        self.target_id = target_id
        self.status = status
        super().__init__(
            f"{target_type}:{target_id} cannot be submitted from status {status}"
        )


# Authorization


class AuthorizationError(ApprovalKernelError):
    """Base exception for actors acting outside their authority."""

    code: str = "AUTHORIZATION_ERROR"


class UnauthorizedApproverError(AuthorizationError):
    """The acting user does not satisfy the step's approver reference."""

    code: str = "UNAUTHORIZED_APPROVER"

    def __init__(self, actor_id: str, approver_type: str, approver_id: str):
        self.actor_id = actor_id
        self.approver_type = approver_type
        self.approver_id = approver_id
        super().__init__(
            f"User {actor_id} is not approver {approver_type}:{approver_id}"
        )


class UnauthorizedActorError(AuthorizationError):
    """The acting user may not perform this operation on the request."""

    code: str = "UNAUTHORIZED_ACTOR"

    def __init__(self, actor_id: str, request_id: str, operation: str):
        self.actor_id = actor_id
        self.request_id = request_id
        self.operation = operation
        super().__init__(
            f"User {actor_id} may not {operation} approval request {request_id}"
        )


# Concurrency


class ConcurrencyError(ApprovalKernelError):
    """Base exception for concurrent-modification conflicts."""

    code: str = "CONCURRENCY_ERROR"


class StepAlreadyDecidedError(ConcurrencyError):
    """Compare-and-swap on a step record found it no longer PENDING."""

    code: str = "STEP_ALREADY_DECIDED"

    def __init__(self, step_record_id: str, current_status: str | None):
        self.step_record_id = step_record_id
        self.current_status = current_status
        super().__init__(
            f"Step record {step_record_id} was already decided "
            f"(status={current_status})"
        )


# Fatal


class PartialWriteError(ApprovalKernelError):
    """
    A multi-write unit failed part way and could not be compensated.

    FATAL.  The request, its step records, and the target document may
    disagree.  An operator must reconcile manually using ``context``.
    """

    code: str = "PARTIAL_WRITE"

    def __init__(self, operation: str, context: dict):
        self.operation = operation
        self.context = dict(context)
        super().__init__(
            f"Partial write during {operation}; manual reconciliation required"
        )


# Side effects


class NotificationDeliveryError(ApprovalKernelError):
    """A notification sink could not enqueue a message."""

    code: str = "NOTIFICATION_DELIVERY_FAILED"

    def __init__(self, recipient_id: str, notification_type: str, reason: str):
        self.recipient_id = recipient_id
        self.notification_type = notification_type
        self.reason = reason
        super().__init__(
            f"Could not enqueue {notification_type} for {recipient_id}: {reason}"
        )
