"""
mission_config -- single public entrypoint for workflow configuration.

Responsibility:
    Provides the ONLY way to obtain workflow configuration at runtime
    through ``get_active_config()``.  No other component reads the YAML
    file or the ``MISSION_WORKFLOW_CONFIG`` environment variable directly.

Architecture position:
    Configuration -- YAML-driven workflow definition, load-time
    validation.  This package sits above ``mission_kernel`` and below
    ``mission_services``.  The kernel MUST NEVER import from
    ``mission_config``; ``mission_config.bridges`` translates the loaded
    configuration into kernel inputs.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Load-time validation: unknown statuses or roles, malformed effects and
      structural graph errors fail the load with ``WorkflowConfigError``.
    - Deterministic identity: the same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- configured path does not exist.
    - ``yaml.YAMLError`` -- malformed YAML.
    - ``WorkflowConfigError`` -- schema or graph validation failures.

Audit relevance:
    Every fresh load emits a ``MISSION_CONFIG_TRACE`` log entry with the
    config id, version, checksum and transition count, tying workflow log
    entries back to the configuration that governed them.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path

from mission_config.bridges import build_transition_table
from mission_config.loader import load_workflow_config
from mission_config.schema import WorkflowConfig
from mission_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_ENV_VAR = "MISSION_WORKFLOW_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "workflow.yaml"

_cache: dict[Path, WorkflowConfig] = {}
_cache_lock = threading.Lock()


def resolve_config_path(path: Path | str | None = None) -> Path:
    """Explicit path, else ``$MISSION_WORKFLOW_CONFIG``, else the shipped default."""
    if path is not None:
        return Path(path).resolve()
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).resolve()
    return DEFAULT_CONFIG_PATH.resolve()


def get_active_config(path: Path | str | None = None) -> WorkflowConfig:
    """The ONLY public configuration entrypoint.

    Guarantees:
        - The returned config has passed parsing and a trial build of the
          kernel TransitionTable, so the graph is known to be valid.
        - Repeated calls for the same resolved path return the same
          cached instance.

    Args:
        path: Override for the YAML file.  Defaults to
            ``$MISSION_WORKFLOW_CONFIG`` or the shipped
            ``defaults/workflow.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        WorkflowConfigError: If validation fails.
    """
    resolved = resolve_config_path(path)
    with _cache_lock:
        cached = _cache.get(resolved)
        if cached is not None:
            return cached

        config = load_workflow_config(resolved)
        table = build_transition_table(config)

        _logger.info(
            "MISSION_CONFIG_TRACE",
            extra={
                "trace_type": "MISSION_CONFIG_TRACE",
                "config_id": config.config_id,
                "config_version": config.version,
                "checksum": config.checksum,
                "source": str(resolved),
                "transition_count": len(table),
            },
        )
        _cache[resolved] = config
        return config


def clear_config_cache() -> None:
    """Drop cached configurations (tests and config reloads)."""
    with _cache_lock:
        _cache.clear()


__all__ = [
    "CONFIG_ENV_VAR",
    "DEFAULT_CONFIG_PATH",
    "WorkflowConfig",
    "clear_config_cache",
    "get_active_config",
    "resolve_config_path",
]
