"""Progress reporting port for long-running jobs."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol, runtime_checkable


class ProgressPhase(StrEnum):
    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(slots=True, frozen=True, kw_only=True)
class ProgressEvent:
    job_id: str
    phase: ProgressPhase
    fetched: int
    total_estimate: int
    current: str | None = None
    generation: int | None = None
    message: str | None = None


@runtime_checkable
class ProgressSink(Protocol):
    def __call__(self, event: ProgressEvent) -> None: ...


class NullProgressSink:
    def __call__(self, event: ProgressEvent) -> None:
        del event


class CollectingProgressSink:
    """Keeps every event in memory; handy for CLIs that print a summary afterwards."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)
