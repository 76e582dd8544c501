"""Ordered, deduplicated collection of tool progress steps."""

from __future__ import annotations

from threading import Lock

from agentstream.schemas import ProgressStep


class ProgressTracker:
    """Progress steps keyed by (tool, file).

    A later step with an existing identity replaces the earlier one in place,
    so each identity keeps the position where it was first seen. Shared by all
    agents of a turn; every upsert is serialized.
    """

    def __init__(self) -> None:
        self._steps: list[ProgressStep] = []
        self._lock = Lock()

    def upsert(self, step: ProgressStep) -> int:
        """Insert or replace a step, return its index."""
        with self._lock:
            for index, existing in enumerate(self._steps):
                if existing.identity == step.identity:
                    self._steps[index] = step
                    return index
            self._steps.append(step)
            return len(self._steps) - 1

    def steps(self) -> list[ProgressStep]:
        """Snapshot of the current steps in first-seen order."""
        with self._lock:
            return list(self._steps)

    def clear(self) -> None:
        with self._lock:
            self._steps = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._steps)
