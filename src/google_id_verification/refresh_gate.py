"""Throttle for key refreshes forced by unknown key ids.

A token with an unknown ``kid`` makes the key store refetch Google's keys
even when the cached set is still fresh, since Google may have rotated in a
new key. Without a limit, anyone can force one outbound request per forged
token. RefreshGate allows at most one such forced refresh per interval and
counts the denials.

Refreshes caused by cache expiry do not go through the gate.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from .protocols import Clock

logger = logging.getLogger(__name__)

_DEFAULT_INTERVAL: Final[float] = 30
"""Default minimum interval between forced refreshes in seconds."""

_DEFAULT_ALERT_THRESHOLD: Final[int] = 20
"""Default number of denials (per interval) before logging a warning."""


class RefreshGate:
    """Thread-safe rate limiter for forced key refreshes.

    Thread Safety:
        All state changes happen under an internal lock. ``allow()`` is
        cheap and never blocks on I/O, so it is also safe to call from
        asyncio code.

    Attributes:
        _min_interval: Minimum seconds between allowed refreshes.
        _alert_threshold: Denials before a warning is logged.
        _clock: Time source; ``time.time`` when not given.
        _next_allowed_at: Unix timestamp when the next refresh is allowed.
        _denied: Denied attempts since the last allowed one.
    """

    def __init__(
        self,
        min_interval: float = _DEFAULT_INTERVAL,
        alert_threshold: int = _DEFAULT_ALERT_THRESHOLD,
        *,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the refresh gate.

        Args:
            min_interval: Minimum seconds between allowed refreshes.
            alert_threshold: Denied attempts before a warning is logged.
                The warning repeats every ``alert_threshold`` denials.
            clock: Optional time source for tests.

        Raises:
            ValueError: If min_interval or alert_threshold are invalid.
        """
        if min_interval <= 0:
            raise ValueError(f"min_interval must be positive, got {min_interval}")
        if alert_threshold < 1:
            raise ValueError(f"alert_threshold must be at least 1, got {alert_threshold}")

        self._min_interval = min_interval
        self._alert_threshold = alert_threshold
        self._clock = clock

        self._lock = threading.Lock()
        self._next_allowed_at: float = 0.0
        self._denied: int = 0

    @property
    def denied(self) -> int:
        """Denied attempts since the last allowed refresh."""
        return self._denied

    def allow(self) -> bool:
        """Check whether a forced refresh may run now.

        Returns:
            True if allowed (the interval restarts), False if throttled.
        """
        now = self._clock() if self._clock is not None else time.time()

        with self._lock:
            if now < self._next_allowed_at:
                self._denied += 1
                if self._denied % self._alert_threshold == 0:
                    logger.warning(
                        "Forced key refresh throttled %d times in the last %ss; "
                        "possible unknown-kid flood",
                        self._denied,
                        self._min_interval,
                    )
                return False

            self._next_allowed_at = now + self._min_interval
            self._denied = 0
            return True
