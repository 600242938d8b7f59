"""Progress events emitted by the client download pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

ProgressPhase = Literal["resolve", "fetch", "transmux", "save", "done", "error"]

# Fixed checkpoints after the fetch phase (which scales 0 -> FETCH_CEILING).
FETCH_CEILING = 90
TRANSMUX_STARTED = 92
TRANSMUX_FINISHED = 97
FINALIZED = 100


@dataclass(frozen=True)
class ProgressEvent:
    phase: ProgressPhase
    percent: int
    detail: str = ""


def fetch_percent(completed: int, total: int) -> int:
    """Scale segment completion onto 0..FETCH_CEILING."""
    if total <= 0:
        return FETCH_CEILING
    return round(completed / total * FETCH_CEILING)
