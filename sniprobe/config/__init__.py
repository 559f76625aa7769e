"""Configuration module: settings, YAML profile and destination parsing."""

from sniprobe.config.profile import load_probe_profile
from sniprobe.config.settings import ProbeSettings, load_settings
from sniprobe.config.targets import parse_ip_args, parse_port_args

__all__ = [
    "ProbeSettings",
    "load_probe_profile",
    "load_settings",
    "parse_ip_args",
    "parse_port_args",
]
