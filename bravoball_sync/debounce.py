import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 1.0
DEFAULT_MAX_KEYS = 1024


class DebounceGate:
    """Per-key rate limit: an attempt proceeds only if the previous allowed
    attempt under the same key is at least ``interval`` seconds old.

    Rejected attempts are dropped, never queued. The oldest keys are evicted
    once more than ``max_keys`` distinct keys are tracked.
    """

    def __init__(
        self,
        default_interval: float = DEFAULT_INTERVAL,
        max_keys: int = DEFAULT_MAX_KEYS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_interval = default_interval
        self.max_keys = max(1, max_keys)
        self._clock = clock
        self._last_attempts: OrderedDict[str, float] = OrderedDict()
        self._lock = threading.Lock()

    def should_proceed(self, key: str, interval: float | None = None) -> bool:
        if not key:
            raise ValueError("Debounce key must be a non-empty string.")
        window = self.default_interval if interval is None else interval
        with self._lock:
            now = self._clock()
            last = self._last_attempts.get(key)
            if last is not None and now - last < window:
                logger.debug("Skipping '%s': too soon since last request", key)
                return False
            self._last_attempts[key] = now
            self._last_attempts.move_to_end(key)
            while len(self._last_attempts) > self.max_keys:
                self._last_attempts.popitem(last=False)
            return True

    def cancel(self, key: str) -> None:
        with self._lock:
            self._last_attempts.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._last_attempts.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_attempts)


class DelayedCalls:
    """Single-shot delayed calls keyed by name; scheduling a key again
    replaces whatever was pending for it."""

    def __init__(self) -> None:
        self._timers: dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def schedule(self, key: str, delay: float, fn: Callable[..., Any], *args: Any) -> None:
        timer = threading.Timer(delay, self._fire, args=(key, fn, args))
        timer.daemon = True
        with self._lock:
            previous = self._timers.pop(key, None)
            if previous is not None:
                previous.cancel()
            self._timers[key] = timer
        timer.start()

    def _fire(self, key: str, fn: Callable[..., Any], args: tuple[Any, ...]) -> None:
        with self._lock:
            if self._timers.get(key) is not threading.current_thread():
                return
            del self._timers[key]
        try:
            fn(*args)
        except Exception:
            logger.exception("Delayed call '%s' failed", key)

    def pending(self, key: str) -> bool:
        with self._lock:
            return key in self._timers

    def cancel(self, key: str) -> None:
        with self._lock:
            timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

    def cancel_all(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
