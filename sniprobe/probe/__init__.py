"""Probing engine: outcome classifier, connector and per-domain worker."""

from sniprobe.probe.classifier import categorize, classify, classify_error
from sniprobe.probe.connector import Connection, Connector, TlsConnector
from sniprobe.probe.worker import ProbeWorker

__all__ = [
    "Connection",
    "Connector",
    "ProbeWorker",
    "TlsConnector",
    "categorize",
    "classify",
    "classify_error",
]
