"""Pydantic Settings for the probe.

All environment variables use the SNIPROBE_ prefix.
Example: SNIPROBE_WORKERS=500, SNIPROBE_RESIDUAL_SECONDS=120

Precedence when built through ``load_settings``: command-line overrides,
then environment, then the optional YAML profile, then the defaults below.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from sniprobe.config.profile import load_probe_profile
from sniprobe.config.targets import parse_ip_args, parse_port_args
from sniprobe.errors import ConfigurationError
from sniprobe.models.outcomes import Disposition
from sniprobe.pool.endpoints import build_endpoints
from sniprobe.pool.types import Endpoint

logger = logging.getLogger(__name__)

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ProbeSettings(BaseSettings):
    """Probe configuration validated from flags, environment and profile."""

    # Destinations
    destination_ips: str = "127.0.0.1"  # e.g. "1.1.1.1,2.2.2.2"
    destination_ports: str = "10000-65000"  # e.g. "3000,4000-4002"

    # Worker pool
    workers: int = Field(default=1000, ge=1, le=100_000)
    job_queue_size: int = Field(default=100, ge=1)
    result_queue_size: int = Field(default=100, ge=1)

    # Per-attempt deadlines and endpoint cooldowns
    timeout_seconds: float = Field(default=3.0, gt=0)  # TCP connect and TLS handshake
    residual_seconds: float = Field(default=180.0, ge=0)  # after an observed RST
    tcp_timeout_cooldown_seconds: float = Field(default=30.0, ge=0)
    read_buffer_bytes: int = Field(default=10, ge=1)

    # Output / logging
    output_path: str | None = None  # None = stdout
    log_path: str | None = None  # None = stderr
    log_level: str = "INFO"
    log_format: Literal["text", "json"] = "text"
    flush: bool = True

    # Profiling
    cpuprofile: str | None = None

    model_config = {"env_prefix": "SNIPROBE_"}

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}")
        return level

    def release_delay(self, disposition: Disposition) -> float:
        """Release delay in seconds for an endpoint disposition."""
        if disposition is Disposition.COOLDOWN:
            return self.tcp_timeout_cooldown_seconds
        if disposition is Disposition.RESIDUAL:
            return self.residual_seconds
        return 0.0

    def endpoints(self) -> list[Endpoint]:
        """Parse destinations into the port-major endpoint list.

        Raises ``ConfigurationError`` for malformed IPs or ports.
        """
        ips = parse_ip_args(self.destination_ips)
        ports = parse_port_args(self.destination_ports)
        return build_endpoints(ips, ports)


def load_settings(
    profile_path: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> ProbeSettings:
    """Build ``ProbeSettings`` from overrides, environment and a YAML profile.

    ``None`` values in *overrides* mean "not given" and are ignored.

    Raises
    ------
    ConfigurationError
        If the profile cannot be loaded or any value fails validation.
    """
    profile = load_probe_profile(profile_path) if profile_path else {}
    given = {k: v for k, v in (overrides or {}).items() if v is not None}

    try:
        from_env = ProbeSettings()
        env_values = from_env.model_dump(include=from_env.model_fields_set)
        settings = ProbeSettings(**{**profile, **env_values, **given})
    except ValidationError as exc:
        fields = [
            {"field": ".".join(str(loc) for loc in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        raise ConfigurationError("Invalid settings", fields=fields) from exc

    logger.debug(
        "Settings loaded (profile=%s, overrides=%s)", profile_path, sorted(given)
    )
    return settings
