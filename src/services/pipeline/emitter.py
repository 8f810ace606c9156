"""Per-request formatter for progress records, annotations and text frames."""

from __future__ import annotations

import json
from typing import Any

from schemas.streaming import (
    BuilderResultAnnotation,
    ContextSummaryAnnotation,
    PlatflowSseEvent,
    ProgressAnnotation,
    ProgressLabel,
    ProgressStatus,
    TruncationAnnotation,
    UsageAnnotation,
    UsageTotals,
)


class ProgressEmitter:
    """Turns pipeline events into SSE frames.

    Owns the request's ``order`` counter: every progress record gets the next
    value, starting at 1, and values are never reused.
    """

    def __init__(self, chat_id: str = "") -> None:
        self.chat_id = chat_id
        self._order = 0

    @property
    def last_order(self) -> int:
        return self._order

    def progress(self, label: ProgressLabel, status: ProgressStatus, message: str) -> str:
        self._order += 1
        record = ProgressAnnotation(
            label=label, status=status, order=self._order, message=message
        )
        return PlatflowSseEvent.for_record(record).to_sse()

    def builder_result(self, payload: Any) -> str:
        record = BuilderResultAnnotation(
            summary=json.dumps(payload), chat_id=self.chat_id
        )
        return PlatflowSseEvent.for_record(record).to_sse()

    def context_summary(self, summary: str) -> str:
        record = ContextSummaryAnnotation(summary=summary, chat_id=self.chat_id)
        return PlatflowSseEvent.for_record(record).to_sse()

    def truncation(self, segment: int, max_segments: int, continued: bool) -> str:
        record = TruncationAnnotation(
            segment=segment, max_segments=max_segments, continued=continued
        )
        return PlatflowSseEvent.for_record(record).to_sse()

    def usage(self, totals: UsageTotals) -> str:
        return PlatflowSseEvent.for_record(UsageAnnotation(value=totals)).to_sse()

    def text(self, fragment: str) -> str:
        return PlatflowSseEvent.delta(fragment).to_sse()
