"""
Module: approval_kernel.selectors.template_selector
Responsibility: Read-only access to flow templates for listing and editing.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Soft-deleted templates and steps are never returned.
    - Steps are ordered by step_order.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from approval_kernel.domain.approval import (
    ApproverRef,
    ApproverType,
    FlowTemplate,
    FlowTemplateSummary,
    TargetType,
)
from approval_kernel.models.flow_template import FlowTemplateModel
from approval_kernel.selectors.base import BaseSelector


class FlowTemplateSelector(BaseSelector[FlowTemplateModel]):
    """Queries over flow_templates / flow_steps."""

    def list_templates(
        self,
        target_type: TargetType | None = None,
        include_inactive: bool = False,
    ) -> list[FlowTemplateSummary]:
        """Non-deleted templates ordered by code, then name."""
        stmt = select(FlowTemplateModel).where(FlowTemplateModel.is_deleted.is_(False))
        if not include_inactive:
            stmt = stmt.where(FlowTemplateModel.is_active.is_(True))
        if target_type is not None:
            stmt = stmt.where(FlowTemplateModel.target_type == target_type.value)
        stmt = stmt.order_by(FlowTemplateModel.template_code, FlowTemplateModel.name)

        summaries = []
        for model in self.session.execute(stmt).scalars():
            updater = model.updated_by_id or model.created_by_id
            summaries.append(
                FlowTemplateSummary(
                    template_id=model.id,
                    template_code=model.template_code,
                    name=model.name,
                    target_type=TargetType(model.target_type),
                    description=model.description,
                    is_active=model.is_active,
                    step_count=len(model.live_steps()),
                    updated_at=model.updated_at,
                    updated_by_name=self._display_name(ApproverRef.user(updater)),
                )
            )
        return summaries

    def _load(self, template_id: UUID) -> FlowTemplateModel | None:
        return self.session.execute(
            select(FlowTemplateModel).where(
                FlowTemplateModel.id == template_id,
                FlowTemplateModel.is_deleted.is_(False),
            )
        ).scalar_one_or_none()

    def get_template_with_steps(self, template_id: UUID) -> FlowTemplate | None:
        """Template plus live steps, each approver resolved to a display name."""
        model = self._load(template_id)
        if model is None:
            return None
        steps = []
        for step in model.live_steps():
            approver = ApproverRef(ApproverType(step.approver_type), step.approver_id)
            steps.append(step.to_dto(approver_name=self._display_name(approver)))
        return model.to_dto(steps=tuple(steps))

    def get_by_code(self, template_code: str) -> FlowTemplate | None:
        model = self.session.execute(
            select(FlowTemplateModel).where(
                FlowTemplateModel.template_code == template_code,
                FlowTemplateModel.is_deleted.is_(False),
            )
        ).scalar_one_or_none()
        if model is None:
            return None
        return model.to_dto()
