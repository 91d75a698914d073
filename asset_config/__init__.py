"""
asset_config -- single public entrypoint for runtime settings.

Responsibility:
    ``get_active_settings()`` is the only way to obtain settings at runtime.
    It reads the packaged ``defaults.yaml``, overlays the file named by
    ``ASSET_KERNEL_CONFIG`` (or an explicit path), applies the
    ``ASSET_KERNEL_DATABASE_URL`` override and returns frozen
    ``KernelSettings``.

Architecture position:
    Configuration.  Sits above ``asset_kernel`` and below ``asset_services``.
    The kernel MUST NEVER import from ``asset_config``; ``bridges`` turns
    settings into the kernel's ``WorkflowPolicy``.

Failure modes:
    - ``FileNotFoundError`` -- override file does not exist.
    - ``ValueError`` -- unknown sections/keys or invalid values.

Audit relevance:
    Every call emits an ``ASSET_CONFIG_TRACE`` log entry with the settings
    checksum, so each unit of work can be tied to the configuration that
    governed it.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path

from asset_config.loader import load_yaml_file, merge_settings, parse_settings
from asset_config.schema import KernelSettings

_logger = logging.getLogger("asset_kernel.config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

CONFIG_ENV_VAR = "ASSET_KERNEL_CONFIG"
DATABASE_URL_ENV_VAR = "ASSET_KERNEL_DATABASE_URL"


def get_active_settings(path: Path | str | None = None) -> KernelSettings:
    """The ONLY public settings entrypoint.

    Args:
        path: Override file.  Defaults to ``$ASSET_KERNEL_CONFIG`` when set.
    """
    data = load_yaml_file(DEFAULTS_PATH)

    override_path = path or os.environ.get(CONFIG_ENV_VAR)
    if override_path:
        data = merge_settings(data, load_yaml_file(Path(override_path)))

    settings = parse_settings(data)

    database_url = os.environ.get(DATABASE_URL_ENV_VAR)
    if database_url:
        settings = replace(settings, database=replace(settings.database, url=database_url))

    _logger.info(
        "ASSET_CONFIG_TRACE",
        extra={
            "config_checksum": settings.checksum,
            "override_path": str(override_path) if override_path else None,
        },
    )
    return settings


__all__ = ["KernelSettings", "get_active_settings"]
