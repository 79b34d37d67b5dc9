"""
Approval configuration schema.

Defines the human-authored, reviewable configuration artifacts.  YAML
files are parsed into these types by the loader; bridges translate them
into kernel objects (WorkflowEngine arguments, FlowTemplateService calls).

  EngineSettings  = engine behaviour knobs plus the template seed set
  FlowTemplateDef = one seedable approval flow template
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Template seed definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FlowStepDef:
    """One step of a seeded flow template."""

    step_order: int
    approver_type: str  # user, role, department
    approver_id: str
    step_name: str = ""
    description: str | None = None
    is_skippable: bool = False


@dataclass(frozen=True)
class FlowTemplateDef:
    """A flow template to seed, keyed by template_code."""

    template_code: str
    name: str
    target_type: str  # quote, purchase_order
    steps: tuple[FlowStepDef, ...] = ()
    description: str | None = None
    is_active: bool = True


# ---------------------------------------------------------------------------
# Engine settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineSettings:
    """Runtime settings of the approval workflow.

    ``checksum`` fingerprints the YAML content the settings were built
    from; it is empty for settings constructed in code.
    """

    config_id: str = "default"
    version: int = 1
    task_list_mode: str = "actionable"
    submittable_statuses: tuple[str, ...] = ("draft", "rejected")
    notification_link_templates: dict[str, str] = field(default_factory=lambda: {
        "quote": "/quotes/{target_id}",
        "purchase_order": "/purchase-orders/{target_id}",
    })
    database_url: str | None = None
    templates: tuple[FlowTemplateDef, ...] = ()
    checksum: str = ""
