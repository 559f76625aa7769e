"""Endpoint data models for the endpoint pool."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class EndpointState(str, Enum):
    """Lifecycle of an endpoint inside the pool. ``EVICTED`` is terminal."""

    AVAILABLE = "available"
    IN_USE = "in_use"
    COOLING = "cooling"
    EVICTED = "evicted"


@dataclass(frozen=True)
class Endpoint:
    """A destination ``host:port`` that ClientHellos are sent to."""

    host: str
    port: int

    @property
    def address(self) -> str:
        """Connectable address string, with IPv6 hosts bracketed."""
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"

    def __str__(self) -> str:
        return self.address
