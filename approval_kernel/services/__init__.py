"""Services for the approval kernel (write side)."""

from approval_kernel.services.approver_directory import (
    StaticApproverDirectory,
    UserProfileDirectory,
)
from approval_kernel.services.notification_service import (
    DatabaseNotificationSink,
    NotificationService,
)
from approval_kernel.services.target_document_adapter import TargetDocumentAdapter
from approval_kernel.services.template_service import FlowTemplateService
from approval_kernel.services.workflow_engine import WorkflowEngine

__all__ = [
    "DatabaseNotificationSink",
    "FlowTemplateService",
    "NotificationService",
    "StaticApproverDirectory",
    "TargetDocumentAdapter",
    "UserProfileDirectory",
    "WorkflowEngine",
]
