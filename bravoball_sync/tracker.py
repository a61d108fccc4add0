import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class Domain(str, Enum):
    ORDERED_DRILLS = "ordered_drills"
    SAVED_FILTERS = "saved_filters"
    LIKED_DRILLS = "liked_drills"
    SAVED_DRILLS = "saved_drills"
    COMPLETED_SESSIONS = "completed_sessions"
    PROGRESS_HISTORY = "progress_history"


@dataclass(frozen=True)
class ChangeEvent:
    domain: Domain


class ChangeTracker:
    """Dirty flags per domain.

    A flag is set by a local mutation and cleared only after the remote
    acknowledged a push of that domain. Each mark bumps the domain's version
    so a push that raced a newer mutation cannot clear the newer one.
    """

    def __init__(self, on_dirty: Callable[[Domain], None] | None = None) -> None:
        self.on_dirty = on_dirty
        self._dirty: dict[Domain, bool] = {d: False for d in Domain}
        self._versions: dict[Domain, int] = {d: 0 for d in Domain}
        self._suppress_depth = 0
        self._lock = threading.Lock()

    @property
    def logging_out(self) -> bool:
        with self._lock:
            return self._suppress_depth > 0

    @contextmanager
    def suppressed(self) -> Iterator[None]:
        with self._lock:
            self._suppress_depth += 1
        try:
            yield
        finally:
            with self._lock:
                self._suppress_depth -= 1

    def mark_dirty(self, domain: Domain) -> bool:
        with self._lock:
            if self._suppress_depth > 0:
                return False
            self._dirty[domain] = True
            self._versions[domain] += 1
        if self.on_dirty is not None:
            try:
                self.on_dirty(domain)
            except Exception:
                logger.exception("Local cache write for %s failed", domain.value)
        return True

    def handle_event(self, event: ChangeEvent) -> None:
        self.mark_dirty(event.domain)

    def is_dirty(self, domain: Domain) -> bool:
        with self._lock:
            return self._dirty[domain]

    def has_any_dirty(self) -> bool:
        with self._lock:
            return any(self._dirty.values())

    def dirty_domains(self) -> list[Domain]:
        with self._lock:
            return [d for d in Domain if self._dirty[d]]

    def version(self, domain: Domain) -> int:
        with self._lock:
            return self._versions[domain]

    def clear(self, domain: Domain, version: int | None = None) -> bool:
        with self._lock:
            if version is not None and self._versions[domain] != version:
                return False
            self._dirty[domain] = False
            return True

    def reset(self) -> None:
        with self._lock:
            for domain in Domain:
                self._dirty[domain] = False
