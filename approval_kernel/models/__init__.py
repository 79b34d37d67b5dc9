"""ORM models for the approval kernel."""

from approval_kernel.models.approval import ApprovalRequestModel, StepRecordModel
from approval_kernel.models.document import PurchaseOrderModel, QuoteModel
from approval_kernel.models.flow_template import FlowStepModel, FlowTemplateModel
from approval_kernel.models.notification import NotificationModel
from approval_kernel.models.user_profile import UserProfileModel

__all__ = [
    "ApprovalRequestModel",
    "StepRecordModel",
    "FlowTemplateModel",
    "FlowStepModel",
    "QuoteModel",
    "PurchaseOrderModel",
    "NotificationModel",
    "UserProfileModel",
]
