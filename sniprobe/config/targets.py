"""Parsing of destination IP and port arguments.

``-dip 1.1.1.1,2.2.2.2`` and ``-p 1000,2000-2002`` style values are turned
into ordered, de-duplicated lists. Anything malformed raises
``ConfigurationError`` so the run aborts before probing begins.
"""

from __future__ import annotations

import ipaddress
from ipaddress import IPv4Address, IPv6Address

from sniprobe.errors import ConfigurationError

MIN_PORT = 1
MAX_PORT = 65535


def _split(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def parse_ip_args(raw: str) -> list[IPv4Address | IPv6Address]:
    """Parse a comma-separated list of IPv4/IPv6 addresses.

    Order is preserved and duplicates are dropped.
    """
    items = _split(raw or "")
    if not items:
        raise ConfigurationError("No destination IP given", value=raw)

    ips: list[IPv4Address | IPv6Address] = []
    seen: set[IPv4Address | IPv6Address] = set()
    for item in items:
        try:
            ip = ipaddress.ip_address(item.strip("[]"))
        except ValueError:
            raise ConfigurationError(f"Invalid IP address: {item!r}", value=raw) from None
        if ip in seen:
            continue
        seen.add(ip)
        ips.append(ip)
    return ips


def _parse_port(text: str, raw: str) -> int:
    try:
        port = int(text)
    except ValueError:
        raise ConfigurationError(f"Invalid port: {text!r}", value=raw) from None
    if not MIN_PORT <= port <= MAX_PORT:
        raise ConfigurationError(
            f"Port {port} out of range {MIN_PORT}-{MAX_PORT}", value=raw
        )
    return port


def parse_port_args(raw: str) -> list[int]:
    """Parse a comma-separated list of ports and inclusive ``lo-hi`` ranges.

    Order is preserved and duplicates are dropped.
    """
    items = _split(raw or "")
    if not items:
        raise ConfigurationError("No destination port given", value=raw)

    ports: list[int] = []
    seen: set[int] = set()
    for item in items:
        if "-" in item:
            low_text, _, high_text = item.partition("-")
            low = _parse_port(low_text.strip(), raw)
            high = _parse_port(high_text.strip(), raw)
            if low > high:
                raise ConfigurationError(f"Descending port range: {item!r}", value=raw)
            candidates: range | tuple[int, ...] = range(low, high + 1)
        else:
            candidates = (_parse_port(item, raw),)

        for port in candidates:
            if port in seen:
                continue
            seen.add(port)
            ports.append(port)
    return ports
