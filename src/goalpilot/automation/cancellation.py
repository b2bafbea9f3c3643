"""Cooperative cancellation and pause checkpoints for goal runs."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import GoalCancelled

LOGGER = logging.getLogger(__name__)

DEFAULT_PAUSE_INTERVAL = 0.25

Predicate = Callable[[], bool]


def _never() -> bool:
    return False


@dataclass(slots=True)
class CancellationToken:
    """Polled cancel/pause predicates checked at every suspension point.

    ``checkpoint`` raises :class:`GoalCancelled` when cancellation was
    requested. While paused it sleeps ``pause_interval`` seconds and re-polls
    both predicates, so pause never consumes an attempt but pause-then-cancel
    still unwinds the run.
    """

    should_cancel: Predicate = _never
    should_pause: Predicate = _never
    pause_interval: float = DEFAULT_PAUSE_INTERVAL

    @classmethod
    def coerce(
        cls,
        should_cancel: Optional[Predicate] = None,
        should_pause: Optional[Predicate] = None,
        pause_interval: Optional[float] = None,
    ) -> "CancellationToken":
        interval = pause_interval if pause_interval is not None and pause_interval > 0 else DEFAULT_PAUSE_INTERVAL
        return cls(
            should_cancel=should_cancel if callable(should_cancel) else _never,
            should_pause=should_pause if callable(should_pause) else _never,
            pause_interval=interval,
        )

    def is_cancelled(self) -> bool:
        return bool(self.should_cancel())

    def is_paused(self) -> bool:
        return bool(self.should_pause())

    async def checkpoint(self, label: str = "") -> None:
        if self.is_cancelled():
            raise GoalCancelled(f"Cancelled at {label or 'checkpoint'}")
        paused = False
        while self.is_paused():
            if not paused:
                LOGGER.debug("Goal run paused at %s", label or "checkpoint")
                paused = True
            await asyncio.sleep(self.pause_interval)
            if self.is_cancelled():
                raise GoalCancelled(f"Cancelled while paused at {label or 'checkpoint'}")


__all__ = ["CancellationToken", "DEFAULT_PAUSE_INTERVAL"]
