"""YAML probe profile loader.

A profile is a YAML mapping of ``ProbeSettings`` field names to values,
either at the top level or under a ``probe:`` key::

    probe:
      destination_ips: 203.0.113.10,203.0.113.11
      destination_ports: 20000-20999
      workers: 2000
      residual_seconds: 120

Values are validated later, when ``ProbeSettings`` is built.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from sniprobe.errors import ConfigurationError

logger = logging.getLogger(__name__)


def load_probe_profile(yaml_path: str) -> dict[str, Any]:
    """Parse a probe profile YAML file into a plain settings dict.

    Raises
    ------
    ConfigurationError
        If the file is missing, unreadable, not valid YAML, or not a mapping.
    """
    path = Path(yaml_path)

    if not path.is_file():
        raise ConfigurationError(f"Profile not found: {yaml_path}", path=yaml_path)

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(f"Cannot read profile {yaml_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in profile {yaml_path}: {exc}") from exc

    if raw is None:
        logger.warning("Profile %s is empty, using defaults", yaml_path)
        return {}

    if isinstance(raw, dict) and "probe" in raw:
        raw = raw["probe"]

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Profile {yaml_path} must contain a mapping", path=yaml_path)

    profile = {str(key).replace("-", "_"): value for key, value in raw.items()}
    logger.info("Loaded probe profile %s (%d keys)", yaml_path, len(profile))
    return profile
