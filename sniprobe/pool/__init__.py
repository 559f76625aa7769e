"""Endpoint pool package: borrow, cooldown and eviction of destination endpoints."""

from sniprobe.pool.endpoints import EndpointPool, build_endpoints
from sniprobe.pool.types import Endpoint, EndpointState

__all__ = ["Endpoint", "EndpointPool", "EndpointState", "build_endpoints"]
