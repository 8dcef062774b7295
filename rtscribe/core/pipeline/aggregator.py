"""Segment-based transcript aggregation.

The server tags each recognition result with a segment index and a finality
flag. Segments can arrive out of order and can be re-finalized, so the
authoritative transcript is always rebuilt from the finalized segments sorted
by index. Provisional text is shown after the finalized prefix but is never
stored.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Tuple

from ...logging import get_logger

LOGGER = get_logger(__name__)

_LEADING_PUNCTUATION = re.compile(r"^[。，、；：！？.,;:!?]+")


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def parse_result_text(payload: Any) -> str:
    """Extract recognized text from ``cn.st.rt[].ws[].cw[].w``.

    Only the first string candidate at each word position is kept; words are
    concatenated in document order with no separator.
    """

    sentence = _as_dict(_as_dict(_as_dict(payload).get("cn")).get("st"))
    parts: List[str] = []
    for segment in _as_list(sentence.get("rt")):
        for word in _as_list(_as_dict(segment).get("ws")):
            for candidate in _as_list(_as_dict(word).get("cw")):
                text = _as_dict(candidate).get("w")
                if isinstance(text, str):
                    parts.append(text)
                    break
    return "".join(parts)


def clean_display_text(text: str) -> str:
    """Strip one leading run of sentence punctuation from server text."""

    return _LEADING_PUNCTUATION.sub("", text, count=1)


class SegmentAggregator:
    """Owns the segment index to confirmed text mapping.

    Usage::

        aggregator = SegmentAggregator()
        aggregator.apply("b", segment_id=3, is_final=True)
        aggregator.apply("a", segment_id=1, is_final=True)
        aggregator.apply("c", segment_id=2, is_final=False)  # "abc", not stored
        aggregator.current_transcript()  # "ab"
    """

    def __init__(self) -> None:
        self._segments: Dict[int, str] = {}
        # Last final result that carried no segment index; it stands for the
        # whole transcript until an indexed segment is finalized again.
        self._unindexed: Optional[str] = None

    def record(self, index: int, text: str) -> str:
        """Finalize ``index`` with ``text`` and return the aggregate transcript."""

        if index < 0:
            raise ValueError("segment index must be non-negative")
        previous = self._segments.get(index)
        if previous is not None and previous != text:
            LOGGER.debug("Segment %s re-finalized: %r -> %r", index, previous, text)
        self._segments[index] = text
        self._unindexed = None
        return self.current_transcript()

    def confirmed_text(self) -> str:
        return "".join(text for _, text in sorted(self._segments.items()))

    def preview(self, text: str) -> str:
        """Finalized prefix followed by provisional ``text``; nothing is stored."""

        return self.confirmed_text() + text

    def current_transcript(self) -> str:
        if self._unindexed is not None:
            return self._unindexed
        return self.confirmed_text()

    def apply(self, text: str, segment_id: Optional[int] = None, is_final: bool = False) -> str:
        """Fold one recognition result in and return the text to display."""

        if segment_id is None:
            if is_final:
                self._unindexed = text
            return text
        if is_final:
            return self.record(segment_id, text)
        return self.preview(text)

    @property
    def segments(self) -> List[Tuple[int, str]]:
        return sorted(self._segments.items())

    def clear(self) -> None:
        self._segments.clear()
        self._unindexed = None

    def __len__(self) -> int:
        return len(self._segments)

    def __repr__(self) -> str:
        return f"SegmentAggregator({len(self._segments)} segments)"


__all__ = ["SegmentAggregator", "clean_display_text", "parse_result_text"]
