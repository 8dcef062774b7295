"""Session-level transcript aggregation and coordination."""

from .aggregator import SegmentAggregator, clean_display_text, parse_result_text
from .control import SessionControl, SessionOutcome, StartGate

__all__ = [
    "SegmentAggregator",
    "SessionControl",
    "SessionOutcome",
    "StartGate",
    "clean_display_text",
    "parse_result_text",
]
