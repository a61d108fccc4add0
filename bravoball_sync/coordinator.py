import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from . import services
from .client import RemoteClient
from .config import Settings, load_settings
from .debounce import DebounceGate, DelayedCalls
from .errors import AuthRequiredError, DebouncedError, SyncError
from .storage import JsonFileCache, TokenStore
from .stores import SessionStore
from .tracker import ChangeTracker, Domain

logger = logging.getLogger(__name__)

SAVE_KEY = "save_changes"
DIRTY_KEY = "dirty_domains"

# Liked and saved groups share one remote listing, so they are pushed together.
PUSH_UNITS: tuple[tuple[Domain, ...], ...] = (
    (Domain.ORDERED_DRILLS,),
    (Domain.SAVED_FILTERS,),
    (Domain.LIKED_DRILLS, Domain.SAVED_DRILLS),
    (Domain.COMPLETED_SESSIONS,),
    (Domain.PROGRESS_HISTORY,),
)


class SyncOutcome(str, Enum):
    SYNCED = "synced"
    FAILED = "failed"
    SKIPPED = "skipped"
    AUTH_REQUIRED = "auth_required"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class DomainResult:
    domain: Domain
    outcome: SyncOutcome
    error: str | None = None


@dataclass
class SyncReport:
    """Outcome of one sync or load pass, one entry per domain attempted."""

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    results: list[DomainResult] = field(default_factory=list)

    def outcome(self, domain: Domain) -> SyncOutcome | None:
        for result in self.results:
            if result.domain is domain:
                return result.outcome
        return None

    def domains(self, outcome: SyncOutcome) -> list[Domain]:
        return [r.domain for r in self.results if r.outcome is outcome]

    @property
    def ok(self) -> bool:
        return all(r.outcome is SyncOutcome.SYNCED for r in self.results)


class SyncCoordinator:
    """Decides when dirty domains are pushed and isolates their failures.

    A domain's dirty flag is cleared only after its own push succeeded and
    no newer local mutation happened meanwhile. One failing domain never
    blocks or clears another.
    """

    def __init__(
        self,
        store: SessionStore,
        tracker: ChangeTracker,
        client: RemoteClient,
        cache: JsonFileCache,
        delayed: DelayedCalls | None = None,
        interval: float = 30.0,
        save_delay: float = 2.0,
        on_auth_required: Callable[[AuthRequiredError], None] | None = None,
    ) -> None:
        self.store = store
        self.tracker = tracker
        self.client = client
        self.cache = cache
        self.delayed = delayed if delayed is not None else DelayedCalls()
        self.interval = interval
        self.save_delay = save_delay
        self.on_auth_required = on_auth_required
        self.logout_listeners: list[Callable[[], None]] = []

        self._lock = threading.Lock()
        self._in_flight: set[Domain] = set()
        self._generation = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

        if self.tracker.on_dirty is None:
            self.tracker.on_dirty = self.write_cache
        self.store.subscribe(self.tracker.handle_event)

    def write_cache(self, domain: Domain) -> None:
        self.cache.set(domain.value, self.store.snapshot(domain))
        self.cache.set(DIRTY_KEY, [d.value for d in self.tracker.dirty_domains()])

    # Pushing

    def _push(self, unit: tuple[Domain, ...]) -> None:
        if unit == (Domain.ORDERED_DRILLS,):
            drills, session_id = self.store.ordered_push_state()
            services.push_ordered_drills(self.client, drills, session_id)
        elif unit == (Domain.SAVED_FILTERS,):
            services.push_saved_filters(self.client, list(self.store.saved_filters))
        elif unit == (Domain.LIKED_DRILLS, Domain.SAVED_DRILLS):
            saved, liked, deleted = self.store.group_push_state()
            mapping = services.push_drill_groups(self.client, saved, liked, deleted)
            self.store.apply_group_backend_ids(mapping)
            self.store.acknowledge_deleted_groups(deleted)
        elif unit == (Domain.COMPLETED_SESSIONS,):
            for session in self.store.pending_completed_sessions():
                services.push_completed_session(self.client, session)
                self.store.acknowledge_completed_session(session)
        elif unit == (Domain.PROGRESS_HISTORY,):
            services.push_progress_history(self.client, self.store.progress_state())
        else:
            raise ValueError(f"Unknown push unit: {unit}")

    def _claim(self, domains: list[Domain]) -> bool:
        with self._lock:
            if any(d in self._in_flight for d in domains):
                return False
            self._in_flight.update(domains)
            return True

    def _release(self, domains: list[Domain]) -> None:
        with self._lock:
            self._in_flight.difference_update(domains)

    def _cancelled_since(self, generation: int) -> bool:
        with self._lock:
            return self._generation != generation

    def sync_pass(self) -> SyncReport:
        report = SyncReport()
        if self.tracker.logging_out or not self.tracker.has_any_dirty():
            logger.debug("No changes to sync")
            return report

        with self._lock:
            generation = self._generation
        auth_error: AuthRequiredError | None = None

        for unit in PUSH_UNITS:
            domains = [d for d in unit if self.tracker.is_dirty(d)]
            if not domains:
                continue
            if auth_error is not None:
                report.results.extend(DomainResult(d, SyncOutcome.SKIPPED, str(auth_error)) for d in domains)
                continue
            if self._cancelled_since(generation) or self.tracker.logging_out:
                report.results.extend(DomainResult(d, SyncOutcome.CANCELLED) for d in domains)
                continue
            if not self._claim(domains):
                logger.debug("Push for %s already in flight", ", ".join(d.value for d in domains))
                report.results.extend(DomainResult(d, SyncOutcome.SKIPPED, "in flight") for d in domains)
                continue

            versions = {d: self.tracker.version(d) for d in domains}
            try:
                self._push(unit)
            except AuthRequiredError as err:
                logger.warning("Sync stopped, authentication required: %s", err)
                auth_error = err
                report.results.extend(DomainResult(d, SyncOutcome.AUTH_REQUIRED, str(err)) for d in domains)
                continue
            except DebouncedError as err:
                logger.info("Push for %s debounced", ", ".join(d.value for d in domains))
                report.results.extend(DomainResult(d, SyncOutcome.SKIPPED, str(err)) for d in domains)
                continue
            except SyncError as err:
                logger.warning("Push for %s failed: %s", ", ".join(d.value for d in domains), err)
                report.results.extend(DomainResult(d, SyncOutcome.FAILED, str(err)) for d in domains)
                continue
            except Exception as err:
                logger.exception("Push for %s failed unexpectedly", ", ".join(d.value for d in domains))
                report.results.extend(DomainResult(d, SyncOutcome.FAILED, repr(err)) for d in domains)
                continue
            finally:
                self._release(domains)

            # A logout may have cleared the cache while the push was in flight.
            stale = self._cancelled_since(generation) or self.tracker.logging_out
            for domain in domains:
                if self.tracker.clear(domain, versions[domain]):
                    report.results.append(DomainResult(domain, SyncOutcome.SYNCED))
                else:
                    logger.debug("%s changed during push, keeping it dirty", domain.value)
                    report.results.append(DomainResult(domain, SyncOutcome.SKIPPED, "changed during push"))
                if not stale:
                    self.write_cache(domain)
            logger.info("Pushed %s", ", ".join(d.value for d in domains))

        if auth_error is not None and self.on_auth_required is not None:
            self.on_auth_required(auth_error)
        return report

    # Triggers

    def _run_scheduled(self) -> None:
        try:
            self.sync_pass()
        except Exception:
            logger.exception("Scheduled sync pass failed")

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self._run_scheduled()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self._loop, name="bravoball-sync", daemon=True)
            self._thread.start()
        logger.info("Periodic sync every %ss", self.interval)

    def stop(self) -> None:
        self._stop.set()
        with self._lock:
            thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.client.timeout)

    @property
    def running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def on_app_background(self) -> SyncReport:
        logger.info("App moved to background, flushing changes")
        return self.sync_pass()

    def flush(self) -> SyncReport:
        return self.sync_pass()

    def schedule_save(self) -> None:
        self.delayed.schedule(SAVE_KEY, self.save_delay, self._run_scheduled)

    def cancel(self) -> None:
        with self._lock:
            self._generation += 1
        self.delayed.cancel_all()

    # Loading

    def restore_cached(self) -> list[Domain]:
        """Load the local cache into the store.

        Domains that were still unsynced when the cache was written are
        marked dirty again so the next pass pushes them.
        """
        restored: list[Domain] = []
        for domain in Domain:
            payload = self.cache.get(domain.value)
            if payload is None:
                continue
            self.store.restore(domain, payload)
            restored.append(domain)

        known = {d.value: d for d in Domain}
        flags = self.cache.get(DIRTY_KEY, [])
        unsynced = {known[v] for v in flags if v in known} if isinstance(flags, list) else set()
        if self.store.pending_completed_sessions():
            unsynced.add(Domain.COMPLETED_SESSIONS)
        if self.store.deleted_group_ids:
            unsynced.add(Domain.SAVED_DRILLS)
        for domain in Domain:
            if domain in unsynced:
                self.tracker.mark_dirty(domain)
        logger.info("Restored %d domains from the local cache, %d unsynced", len(restored), len(unsynced))
        return restored

    def load_backend_data(self) -> SyncReport:
        report = SyncReport()
        loaders: list[tuple[tuple[Domain, ...], Callable[[], Any]]] = [
            ((Domain.ORDERED_DRILLS,), lambda: self.store.apply_remote_ordered_drills(
                services.fetch_ordered_drills(self.client))),
            ((Domain.SAVED_FILTERS,), lambda: self.store.apply_remote_filters(
                services.fetch_saved_filters(self.client))),
            ((Domain.LIKED_DRILLS, Domain.SAVED_DRILLS), lambda: self.store.apply_remote_groups(
                services.fetch_drill_groups(self.client))),
            ((Domain.COMPLETED_SESSIONS,), lambda: self.store.apply_remote_completed_sessions(
                services.fetch_completed_sessions(self.client))),
            ((Domain.PROGRESS_HISTORY,), lambda: self.store.apply_remote_progress(
                services.fetch_progress_history(self.client))),
        ]
        for domains, load in loaders:
            if any(self.tracker.is_dirty(d) for d in domains):
                logger.info("Keeping unsynced local %s", ", ".join(d.value for d in domains))
                report.results.extend(DomainResult(d, SyncOutcome.SKIPPED, "local changes pending") for d in domains)
                continue
            try:
                load()
            except AuthRequiredError as err:
                logger.warning("Loading stopped, authentication required: %s", err)
                report.results.extend(DomainResult(d, SyncOutcome.AUTH_REQUIRED, str(err)) for d in domains)
                if self.on_auth_required is not None:
                    self.on_auth_required(err)
                break
            except SyncError as err:
                logger.warning("Loading %s failed: %s", ", ".join(d.value for d in domains), err)
                report.results.extend(DomainResult(d, SyncOutcome.FAILED, str(err)) for d in domains)
                continue
            for domain in domains:
                self.write_cache(domain)
                report.results.append(DomainResult(domain, SyncOutcome.SYNCED))
        return report

    # Session lifecycle

    def logout(self) -> None:
        with self.tracker.suppressed():
            self.cancel()
            self.stop()
            self.store.clear()
            self.cache.clear()
            self.tracker.reset()
            self.client.debounce.clear()
            self.client.logout()
            for listener in list(self.logout_listeners):
                try:
                    listener()
                except Exception:
                    logger.exception("Logout listener failed")
        logger.info("Logged out, local user data cleared")

    def close(self) -> None:
        self.stop()
        self.delayed.cancel_all()


def build_coordinator(settings: Settings | None = None, session: Any = None) -> SyncCoordinator:
    settings = settings or load_settings()
    debounce = DebounceGate(settings.debounce_interval, settings.debounce_max_keys)
    client = RemoteClient(
        settings.base_url,
        TokenStore(settings.token_file),
        debounce=debounce,
        session=session,
        timeout=settings.http_timeout,
    )
    return SyncCoordinator(
        SessionStore(),
        ChangeTracker(),
        client,
        JsonFileCache(settings.cache_dir),
        interval=settings.sync_interval,
        save_delay=settings.save_delay,
    )
