"""
approval_kernel.services.template_service -- Flow template store.

Responsibility:
    Create, replace, and soft-delete approval flow templates and their
    ordered steps.  Listing and step-resolved reads delegate to
    FlowTemplateSelector.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/.

Invariants enforced:
    - A template has a name, a code, and at least one step.
    - step_order values are contiguous from 1.
    - template_code is unique (soft-deleted templates included).
    - Updates replace the step set wholesale: existing steps are
      soft-deleted and the new set inserted.  Approval requests already
      created from the template are unaffected; their step records are
      frozen copies.
    - Deletion is soft and never cascades to approval requests.

Failure modes:
    - ValidationError listing missing fields (name, code, steps) or a
      duplicate code.
    - StepOrderError when step orders are not 1..N.
    - TemplateNotFoundError for absent or soft-deleted templates.
"""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import (
    ApproverDirectory,
    FlowStepSpec,
    FlowTemplate,
    FlowTemplateSummary,
    TargetType,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.step_editing import step_orders_contiguous
from approval_kernel.exceptions import (
    StepOrderError,
    TemplateNotFoundError,
    ValidationError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.flow_template import FlowStepModel, FlowTemplateModel
from approval_kernel.selectors.template_selector import FlowTemplateSelector
from approval_kernel.services.base import BaseService, atomic_unit

logger = get_logger("services.template")


def _validate(
    name: str,
    steps: Sequence[FlowStepSpec],
    template_code: str | None = None,
    check_code: bool = False,
) -> None:
    errors = []
    if check_code and not (template_code or "").strip():
        errors.append("template_code is required")
    if not (name or "").strip():
        errors.append("name is required")
    if not steps:
        errors.append("at least one step is required")
    for spec in steps:
        if not spec.approver.approver_id:
            errors.append(f"step {spec.step_order}: approver is required")
    if errors:
        raise ValidationError(errors)

    orders = [spec.step_order for spec in steps]
    if not step_orders_contiguous(orders):
        raise StepOrderError(orders)


class FlowTemplateService(BaseService[FlowTemplateModel]):
    """Manages approval flow templates."""

    def __init__(
        self,
        session: Session,
        directory: ApproverDirectory | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._selector = FlowTemplateSelector(session, directory)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_templates(
        self,
        target_type: TargetType | None = None,
        include_inactive: bool = False,
    ) -> list[FlowTemplateSummary]:
        return self._selector.list_templates(target_type, include_inactive)

    def get_template_with_steps(self, template_id: UUID) -> FlowTemplate:
        template = self._selector.get_template_with_steps(template_id)
        if template is None:
            raise TemplateNotFoundError(str(template_id))
        return template

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _load_model(self, template_id: UUID) -> FlowTemplateModel:
        model = self.session.execute(
            select(FlowTemplateModel).where(
                FlowTemplateModel.id == template_id,
                FlowTemplateModel.is_deleted.is_(False),
            )
        ).scalar_one_or_none()
        if model is None:
            raise TemplateNotFoundError(str(template_id))
        return model

    @staticmethod
    def _step_model(spec: FlowStepSpec, actor_id: UUID) -> FlowStepModel:
        return FlowStepModel(
            step_order=spec.step_order,
            step_name=spec.step_name,
            description=spec.description,
            approver_type=spec.approver.approver_type.value,
            approver_id=spec.approver.approver_id,
            is_skippable=spec.is_skippable,
            is_active=True,
            is_deleted=False,
            created_by_id=actor_id,
        )

    def create_template(
        self,
        template_code: str,
        name: str,
        target_type: TargetType,
        steps: Sequence[FlowStepSpec],
        actor_id: UUID,
        description: str | None = None,
        is_active: bool = True,
    ) -> FlowTemplate:
        """Persist a template, then its steps, as one unit."""
        _validate(name, steps, template_code, check_code=True)

        existing = self.session.execute(
            select(FlowTemplateModel.id).where(
                FlowTemplateModel.template_code == template_code,
            )
        ).first()
        if existing is not None:
            raise ValidationError([f"template_code '{template_code}' already exists"])

        model = FlowTemplateModel(
            template_code=template_code,
            name=name,
            description=description,
            target_type=target_type.value,
            is_active=is_active,
            is_deleted=False,
            created_by_id=actor_id,
        )
        with atomic_unit(self.session, "create_template", {"template_code": template_code}):
            self.session.add(model)
            self.session.flush()
            for spec in sorted(steps, key=lambda s: s.step_order):
                model.steps.append(self._step_model(spec, actor_id))
            self.session.flush()

        with LogContext.bind(template_id=str(model.id), actor_id=str(actor_id)):
            logger.info(
                "flow_template_created",
                extra={
                    "template_code": template_code,
                    "target_type": target_type.value,
                    "step_count": len(steps),
                },
            )
        return self.get_template_with_steps(model.id)

    def update_template(
        self,
        template_id: UUID,
        name: str,
        target_type: TargetType,
        steps: Sequence[FlowStepSpec],
        actor_id: UUID,
        description: str | None = None,
        is_active: bool | None = None,
    ) -> FlowTemplate:
        """Replace header fields and the whole step set.

        ``is_active=None`` keeps the template's current active flag.
        """
        model = self._load_model(template_id)
        _validate(name, steps)

        now = self._clock.now()
        with atomic_unit(self.session, "update_template", {"template_id": str(template_id)}):
            model.name = name
            model.description = description
            model.target_type = target_type.value
            if is_active is not None:
                model.is_active = is_active
            model.updated_at = now
            model.updated_by_id = actor_id

            replaced = [s for s in model.steps if not s.is_deleted]
            for step in replaced:
                step.is_deleted = True
                step.is_active = False
                step.updated_at = now
                step.updated_by_id = actor_id
            # Old rows must be marked deleted before the partial unique
            # index sees the new step orders.
            self.session.flush()

            for spec in sorted(steps, key=lambda s: s.step_order):
                model.steps.append(self._step_model(spec, actor_id))
            self.session.flush()

        with LogContext.bind(template_id=str(template_id), actor_id=str(actor_id)):
            logger.info(
                "flow_template_updated",
                extra={
                    "replaced_steps": len(replaced),
                    "step_count": len(steps),
                },
            )
        return self.get_template_with_steps(template_id)

    def delete_template(self, template_id: UUID, actor_id: UUID) -> None:
        """Soft-delete the template and its steps."""
        model = self._load_model(template_id)
        now = self._clock.now()
        with atomic_unit(self.session, "delete_template", {"template_id": str(template_id)}):
            model.is_deleted = True
            model.is_active = False
            model.updated_at = now
            model.updated_by_id = actor_id
            for step in model.steps:
                if step.is_deleted:
                    continue
                step.is_deleted = True
                step.is_active = False
                step.updated_at = now
                step.updated_by_id = actor_id
            self.session.flush()

        with LogContext.bind(template_id=str(template_id), actor_id=str(actor_id)):
            logger.info("flow_template_deleted")
