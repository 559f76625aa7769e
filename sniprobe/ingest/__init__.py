"""Domain ingestion."""

from sniprobe.ingest.lines import read_domains, resolve_inputs

__all__ = ["read_domains", "resolve_inputs"]
