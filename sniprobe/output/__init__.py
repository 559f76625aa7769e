"""Result output."""

from sniprobe.output.sink import CsvResultSink, open_result_sink

__all__ = ["CsvResultSink", "open_result_sink"]
