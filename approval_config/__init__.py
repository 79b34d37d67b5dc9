"""
approval_config -- single public entrypoint for approval configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files or environment variables directly.

Architecture position:
    Configuration -- sits above ``approval_kernel``.  The kernel MUST NEVER
    import from ``approval_config``; ``approval_config.bridges`` translates
    settings into kernel objects.

Failure modes:
    - ``FileNotFoundError`` -- the requested configuration set or its
      ``engine.yaml`` does not exist.
    - ``ValueError`` -- schema or structural validation failures.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path

from approval_config.loader import load_config_set
from approval_config.schema import EngineSettings, FlowStepDef, FlowTemplateDef

_logger = logging.getLogger("approval_kernel.config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(
    config_dir: Path | None = None,
    config_set: str = "default",
) -> EngineSettings:
    """The ONLY public configuration entrypoint.

    Loads ``<config_dir>/<config_set>/engine.yaml`` plus its template seed
    files.  ``DATABASE_URL`` in the environment overrides the configured
    database_url.

    Args:
        config_dir: Override path to configuration sets directory.
            Defaults to approval_config/sets/.
        config_set: Name of the set subdirectory.

    Raises:
        FileNotFoundError: If the set directory or engine.yaml is missing.
        ValueError: If configuration validation fails.
    """
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    set_dir = sets_dir / config_set
    if not set_dir.is_dir():
        raise FileNotFoundError(f"Configuration set not found: {set_dir}")

    settings = load_config_set(set_dir)

    env_url = os.environ.get("DATABASE_URL")
    if env_url:
        settings = replace(settings, database_url=env_url)

    _logger.info(
        "approval_config_loaded",
        extra={
            "config_set_id": settings.config_id,
            "config_set_version": settings.version,
            "checksum": settings.checksum,
            "task_list_mode": settings.task_list_mode,
            "template_count": len(settings.templates),
        },
    )
    return settings


__all__ = [
    "EngineSettings",
    "FlowStepDef",
    "FlowTemplateDef",
    "get_active_config",
]
