"""Pipeline stages and the tagged results their transitions return."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class Stage(StrEnum):
    INIT = "init"
    BUILDER = "builder"
    SUMMARY = "summary"
    GENERATION = "generation"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STAGES = frozenset({Stage.DONE, Stage.FAILED})


@dataclass(slots=True, frozen=True)
class Continue:
    """Stage succeeded; move on to ``next_stage``."""

    next_stage: Stage


@dataclass(slots=True, frozen=True)
class Degrade:
    """Stage failed in a recoverable way; move on without its result."""

    next_stage: Stage
    error: Exception


@dataclass(slots=True, frozen=True)
class Fail:
    """Unrecoverable failure; the pipeline ends in FAILED."""

    error: Exception


Transition = Continue | Degrade | Fail


def next_stage_for(transition: Transition) -> Stage:
    if isinstance(transition, Fail):
        return Stage.FAILED
    return transition.next_stage
