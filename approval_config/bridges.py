"""
Config -> Kernel Bridges.

Functions that convert EngineSettings into kernel objects.  These live in
approval_config (the producer) because the kernel must NEVER import
approval_config.

Usage:
    from approval_config import get_active_config
    from approval_config.bridges import build_workflow_engine, seed_templates

    settings = get_active_config()
    with session_scope() as session:
        seed_templates(session, settings, actor_id=admin_id)
        engine = build_workflow_engine(session, settings)
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from approval_config.schema import EngineSettings, FlowTemplateDef
from approval_kernel.domain.approval import (
    ApproverDirectory,
    ApproverRef,
    ApproverType,
    DocumentStatus,
    FlowStepSpec,
    FlowTemplate,
    NotificationSink,
    TargetType,
    TaskListMode,
)
from approval_kernel.domain.clock import Clock
from approval_kernel.logging_config import get_logger
from approval_kernel.selectors.template_selector import FlowTemplateSelector
from approval_kernel.services.template_service import FlowTemplateService
from approval_kernel.services.workflow_engine import WorkflowEngine

logger = get_logger("config.bridges")


def step_specs_from_def(template_def: FlowTemplateDef) -> tuple[FlowStepSpec, ...]:
    """Translate a template definition's steps into kernel FlowStepSpecs."""
    return tuple(
        FlowStepSpec(
            step_order=step.step_order,
            approver=ApproverRef(ApproverType(step.approver_type), step.approver_id),
            step_name=step.step_name,
            description=step.description,
            is_skippable=step.is_skippable,
        )
        for step in template_def.steps
    )


def build_workflow_engine(
    session: Session,
    settings: EngineSettings,
    clock: Clock | None = None,
    directory: ApproverDirectory | None = None,
    notification_sink: NotificationSink | None = None,
) -> WorkflowEngine:
    """Build a WorkflowEngine configured from ``settings``."""
    return WorkflowEngine(
        session,
        directory=directory,
        notification_sink=notification_sink,
        clock=clock,
        task_list_mode=TaskListMode(settings.task_list_mode),
        submittable_statuses=[DocumentStatus(s) for s in settings.submittable_statuses],
        notification_links={
            TargetType(k): v for k, v in settings.notification_link_templates.items()
        },
    )


def seed_templates(
    session: Session,
    settings: EngineSettings,
    actor_id: UUID,
    clock: Clock | None = None,
) -> list[FlowTemplate]:
    """Create every configured template whose code does not exist yet.

    Idempotent: templates already present (by code) are left untouched.
    Returns the templates created by this call.
    """
    service = FlowTemplateService(session, clock=clock)
    selector = FlowTemplateSelector(session)
    created = []
    for template_def in settings.templates:
        if selector.get_by_code(template_def.template_code) is not None:
            logger.info(
                "flow_template_seed_skipped",
                extra={"template_code": template_def.template_code},
            )
            continue
        created.append(
            service.create_template(
                template_code=template_def.template_code,
                name=template_def.name,
                target_type=TargetType(template_def.target_type),
                steps=step_specs_from_def(template_def),
                actor_id=actor_id,
                description=template_def.description,
                is_active=template_def.is_active,
            )
        )
    return created
