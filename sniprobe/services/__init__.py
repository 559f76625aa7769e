"""Run orchestration."""

from sniprobe.services.scheduler import ProbeScheduler

__all__ = ["ProbeScheduler"]
