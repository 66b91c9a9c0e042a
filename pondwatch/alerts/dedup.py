"""Moving-window alert signature suppression.

A signature identifies "the same alert": parameter, level and the value
rounded to a fixed precision. A signature seen again inside the window is
a duplicate. The map lives in memory only; a restart clears it.

The poll loop and the push subscription can both feed readings in at the
same time, so the lookup and the refresh of a signature happen together
under one lock.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass


def monotonic_ms() -> float:
    return time.monotonic() * 1000


def alert_signature(parameter: str, level: str, value: float, precision: int = 2) -> str:
    """Derive the deduplication key for a draft.

    Example: ``alert_signature("ph", "critical", 9.504)`` -> ``"ph-critical-9.5"``.
    """
    rounded = round(float(value), precision)
    if rounded == 0:
        rounded = 0.0  # collapse -0.0
    return f"{parameter}-{level}-{rounded}"


@dataclass(frozen=True)
class WindowDecision:
    """Outcome of a check-and-record call."""

    duplicate: bool
    last_seen_ms: float | None


class SignatureWindow:
    """Time-bounded ``{signature -> last_seen}`` map.

    Owned by the pipeline that uses it (never module-level) so tests can
    construct a fresh one with a fake clock.
    """

    def __init__(
        self,
        window_ms: float = 300_000,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        self._window_ms = window_ms
        self._clock = clock
        self._seen: dict[str, float] = {}
        self._lock = threading.Lock()

    @property
    def window_ms(self) -> float:
        return self._window_ms

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, signature: object) -> bool:
        return signature in self._seen

    def now(self) -> float:
        return self._clock()

    def check_and_record(self, signature: str, now: float | None = None) -> WindowDecision:
        """Atomically test a signature and refresh it if it is not a duplicate.

        A duplicate leaves the stored timestamp untouched, so a steady
        stream of identical alerts still re-fires once per window.
        """
        now = self._clock() if now is None else now
        with self._lock:
            last_seen = self._seen.get(signature)
            if last_seen is not None and (now - last_seen) < self._window_ms:
                return WindowDecision(duplicate=True, last_seen_ms=last_seen)
            self._seen[signature] = now
            return WindowDecision(duplicate=False, last_seen_ms=last_seen)

    def sweep(self, now: float | None = None) -> int:
        """Drop signatures older than the window.

        Returns:
            Number of signatures removed.
        """
        now = self._clock() if now is None else now
        cutoff = now - self._window_ms
        with self._lock:
            stale = [sig for sig, seen in self._seen.items() if seen <= cutoff]
            for sig in stale:
                del self._seen[sig]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()
