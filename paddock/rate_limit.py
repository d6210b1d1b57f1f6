"""
In-process rate limits. State is per worker; good enough for auth attempts,
vote spam and chat slow mode on a single instance.
"""
from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowLimiter:
    """At most max_requests per key per window. The window starts on the first hit."""

    def __init__(self, max_requests: int, window_seconds: float) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._windows: dict[str, _Window] = {}

    def hit(self, key: str, now: float | None = None) -> bool:
        """Count one request. Returns False when the key is over its limit."""
        now = time.monotonic() if now is None else now
        window = self._windows.get(key)
        if window is None or now > window.reset_at:
            self._windows[key] = _Window(count=1, reset_at=now + self.window_seconds)
            return True
        if window.count >= self.max_requests:
            return False
        window.count += 1
        return True

    def allowed(self, key: str, now: float | None = None) -> bool:
        """Whether the next hit would be accepted. Does not count."""
        now = time.monotonic() if now is None else now
        window = self._windows.get(key)
        return window is None or now > window.reset_at or window.count < self.max_requests

    def reset(self) -> None:
        self._windows.clear()


class MinIntervalLimiter:
    """Minimum spacing between accepted actions per key (vote throttle, chat slow mode)."""

    def __init__(self, interval_seconds: float) -> None:
        self.interval_seconds = interval_seconds
        self._last: dict[str, float] = {}

    def check(self, key: str, now: float | None = None, interval: float | None = None) -> bool:
        now = time.monotonic() if now is None else now
        spacing = self.interval_seconds if interval is None else interval
        last = self._last.get(key)
        return last is None or now - last >= spacing

    def record(self, key: str, now: float | None = None) -> None:
        self._last[key] = time.monotonic() if now is None else now

    def reset(self) -> None:
        self._last.clear()
