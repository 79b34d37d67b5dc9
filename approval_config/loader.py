"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads the YAML files of a configuration set and parses them into typed
``approval_config.schema`` dataclass instances.  The single public entry
point for runtime config is ``approval_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  parsed YAML content.

Failure modes
-------------
* Missing ``engine.yaml``  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Unknown enum values or non-contiguous step orders  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import EngineSettings, FlowStepDef, FlowTemplateDef
from approval_kernel.domain.approval import (
    ApproverType,
    DocumentStatus,
    TargetType,
    TaskListMode,
)
from approval_kernel.domain.step_editing import step_orders_contiguous


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _check_choice(value: str, choices: type, field_name: str) -> str:
    allowed = {member.value for member in choices}
    if value not in allowed:
        raise ValueError(
            f"{field_name}: {value!r} is not one of {sorted(allowed)}"
        )
    return value


def parse_step_def(data: dict[str, Any]) -> FlowStepDef:
    """Parse a FlowStepDef from a dict."""
    return FlowStepDef(
        step_order=int(data["step_order"]),
        approver_type=_check_choice(
            str(data["approver_type"]).lower(), ApproverType, "approver_type",
        ),
        approver_id=str(data["approver_id"]),
        step_name=data.get("step_name", ""),
        description=data.get("description"),
        is_skippable=bool(data.get("is_skippable", False)),
    )


def parse_template_def(data: dict[str, Any]) -> FlowTemplateDef:
    """
    Parse a FlowTemplateDef from a dict.

    Raises:
        ValueError: unknown target_type, no steps, or step orders that
            are not contiguous from 1.
    """
    code = data["template_code"]
    steps = tuple(
        sorted((parse_step_def(s) for s in data.get("steps", [])), key=lambda s: s.step_order)
    )
    if not steps:
        raise ValueError(f"Template {code}: at least one step is required")
    if not step_orders_contiguous([s.step_order for s in steps]):
        raise ValueError(
            f"Template {code}: step orders {[s.step_order for s in steps]} "
            "are not contiguous from 1"
        )
    return FlowTemplateDef(
        template_code=code,
        name=data["name"],
        target_type=_check_choice(
            str(data["target_type"]).lower(), TargetType, "target_type",
        ),
        steps=steps,
        description=data.get("description"),
        is_active=bool(data.get("is_active", True)),
    )


def parse_engine_settings(
    data: dict[str, Any],
    templates: tuple[FlowTemplateDef, ...] = (),
    checksum: str = "",
) -> EngineSettings:
    """Parse EngineSettings from the ``engine.yaml`` dict."""
    defaults = EngineSettings()
    statuses = tuple(
        _check_choice(str(s).lower(), DocumentStatus, "submittable_statuses")
        for s in data.get("submittable_statuses", defaults.submittable_statuses)
    )
    links = data.get("notification_link_templates", defaults.notification_link_templates)
    for key in links:
        _check_choice(key, TargetType, "notification_link_templates")

    return EngineSettings(
        config_id=data.get("config_id", defaults.config_id),
        version=int(data.get("version", defaults.version)),
        task_list_mode=_check_choice(
            data.get("task_list_mode", defaults.task_list_mode),
            TaskListMode,
            "task_list_mode",
        ),
        submittable_statuses=statuses,
        notification_link_templates=dict(links),
        database_url=data.get("database_url"),
        templates=templates,
        checksum=checksum,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def load_config_set(set_dir: Path) -> EngineSettings:
    """
    Load ``engine.yaml`` and every ``templates/*.yaml`` of one set.

    Template files hold a ``templates:`` list; files are read in name
    order.  Duplicate template codes across files raise ValueError.
    """
    engine_data = load_yaml_file(set_dir / "engine.yaml")

    template_data: list[dict[str, Any]] = []
    templates_dir = set_dir / "templates"
    if templates_dir.is_dir():
        for path in sorted(templates_dir.glob("*.yaml")):
            template_data.extend(load_yaml_file(path).get("templates", []))

    templates = tuple(parse_template_def(t) for t in template_data)
    codes = [t.template_code for t in templates]
    duplicates = sorted({c for c in codes if codes.count(c) > 1})
    if duplicates:
        raise ValueError(f"Duplicate template codes: {duplicates}")

    checksum = compute_checksum({"engine": engine_data, "templates": template_data})
    return parse_engine_settings(engine_data, templates, checksum)
