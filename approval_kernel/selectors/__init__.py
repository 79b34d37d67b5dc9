"""Selectors for the approval kernel (read side)."""

from approval_kernel.selectors.approval_selector import ApprovalSelector
from approval_kernel.selectors.template_selector import FlowTemplateSelector

__all__ = [
    "ApprovalSelector",
    "FlowTemplateSelector",
]
