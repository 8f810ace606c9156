"""Token usage normalisation and per-request accumulation."""

from __future__ import annotations

from dataclasses import dataclass

from schemas.streaming import UsageTotals


_PROMPT_KEYS = ("prompt_tokens", "input_tokens", "request_tokens")
_COMPLETION_KEYS = ("completion_tokens", "output_tokens", "response_tokens")


def _read_tokens(usage: object, keys: tuple[str, ...]) -> int | None:
    """Return the first integer count found under ``keys``."""
    for key in keys:
        if isinstance(usage, dict):
            value = usage.get(key)
        else:
            value = getattr(usage, key, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


@dataclass(slots=True, frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_usage(cls, usage: object | None) -> TokenUsage:
        """Normalise a usage object or mapping from any LLM library.

        Missing counters count as zero; a missing total is derived from the
        prompt and completion counts.
        """
        if usage is None:
            return cls()
        if isinstance(usage, TokenUsage):
            return usage

        prompt = _read_tokens(usage, _PROMPT_KEYS) or 0
        completion = _read_tokens(usage, _COMPLETION_KEYS) or 0
        total = _read_tokens(usage, ("total_tokens",))
        if total is None:
            total = prompt + completion
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class UsageAccumulator:
    """Sums usage reports from every stage of one request."""

    def __init__(self) -> None:
        self._totals = TokenUsage()
        self._reports = 0

    @property
    def totals(self) -> TokenUsage:
        return self._totals

    @property
    def report_count(self) -> int:
        return self._reports

    def add(self, usage: object | None) -> TokenUsage:
        """Merge one report; ``None`` contributes zero."""
        report = TokenUsage.from_usage(usage)
        self._totals = self._totals + report
        self._reports += 1
        return self._totals

    def snapshot(self) -> UsageTotals:
        return UsageTotals(
            completion_tokens=self._totals.completion_tokens,
            prompt_tokens=self._totals.prompt_tokens,
            total_tokens=self._totals.total_tokens,
        )
