"""Single-shot device-ready watchdog.

Holds at most one pending timer. Every arm/disarm bumps a generation
counter; the expiry callback receives the generation it was armed with so
the owner can discard a fire that lost a race with ``disarm``.
"""

from __future__ import annotations

import threading
from collections.abc import Callable

from .logging_setup import logger
from .ports import Timer, TimerFactory


class Watchdog:
    def __init__(
        self,
        timeout_s: float,
        on_expire: Callable[[int], None],
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self.timeout_s = timeout_s
        self._on_expire = on_expire
        self._timer_factory = timer_factory
        self._timer: Timer | None = None
        self._generation = 0

    @property
    def armed(self) -> bool:
        return self._timer is not None

    @property
    def generation(self) -> int:
        return self._generation

    def is_current(self, generation: int) -> bool:
        """True if ``generation`` belongs to the timer that is still pending."""
        return self._timer is not None and generation == self._generation

    def arm(self) -> int:
        """Cancel any pending timer and start a fresh one. Returns its generation."""
        self.disarm()
        self._generation += 1
        gen = self._generation
        timer = self._timer_factory(self.timeout_s, self._expire, args=(gen,))
        timer.daemon = True
        self._timer = timer
        timer.start()
        logger.debug(
            {"event": "watchdog_armed", "generation": gen, "timeout_s": self.timeout_s}
        )
        return gen

    def disarm(self) -> None:
        timer = self._timer
        if timer is None:
            return
        self._timer = None
        self._generation += 1
        timer.cancel()
        logger.debug({"event": "watchdog_disarmed", "generation": self._generation})

    def expired(self, generation: int) -> bool:
        """Consume a fire for ``generation``; False if it is stale."""
        if not self.is_current(generation):
            return False
        self._timer = None
        return True

    def _expire(self, generation: int) -> None:
        self._on_expire(generation)

    def __repr__(self) -> str:
        return (
            f"Watchdog(timeout_s={self.timeout_s}, armed={self.armed}, "
            f"generation={self._generation})"
        )
