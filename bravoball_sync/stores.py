import logging
import threading
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

from .models import (
    LIKED_GROUP_DESCRIPTION,
    LIKED_GROUP_NAME,
    CompletedSession,
    Drill,
    DrillGroup,
    Preferences,
    ProgressHistory,
    SavedFilter,
    SessionDrill,
    SessionPlan,
    completed_session_from_wire,
    completed_session_to_payload,
    filter_from_wire,
    filter_to_payload,
    group_from_payload,
    group_to_payload,
    progress_from_wire,
    progress_to_payload,
    session_drill_from_wire,
    session_drill_to_payload,
)
from .tracker import ChangeEvent, Domain

logger = logging.getLogger(__name__)

Listener = Callable[[ChangeEvent], None]


def _new_liked_group() -> DrillGroup:
    return DrillGroup(name=LIKED_GROUP_NAME, description=LIKED_GROUP_DESCRIPTION, is_liked_group=True)


def _dedupe(drills: list[Drill]) -> list[Drill]:
    seen_ids: set[str] = set()
    seen_titles: set[str] = set()
    unique: list[Drill] = []
    for drill in drills:
        if drill.id in seen_ids or drill.title in seen_titles:
            continue
        seen_ids.add(drill.id)
        seen_titles.add(drill.title)
        unique.append(drill)
    return unique


def _contains(drills: list[Drill], drill: Drill) -> bool:
    return any(d.id == drill.id or d.title == drill.title for d in drills)


class SessionStore:
    """In-memory user data. Every user-facing mutation emits a ChangeEvent;
    remote loads, cache restores and ``clear`` stay silent."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._listeners: list[Listener] = []
        self.session_id: int | None = None
        self.ordered_drills: list[SessionDrill] = []
        self.saved_groups: list[DrillGroup] = []
        self.liked_group = _new_liked_group()
        self.saved_filters: list[SavedFilter] = []
        self.completed_sessions: list[CompletedSession] = []
        self.pending_sessions: list[CompletedSession] = []
        self.progress = ProgressHistory()
        self.deleted_group_ids: set[int] = set()

    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _emit(self, *domains: Domain) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for domain in domains:
            event = ChangeEvent(domain)
            for listener in listeners:
                listener(event)

    # Ordered session drills

    def add_drills(self, drills: list[Drill]) -> int:
        with self._lock:
            current = [entry.drill for entry in self.ordered_drills]
            added = 0
            for drill in drills:
                if _contains(current, drill):
                    continue
                self.ordered_drills.append(SessionDrill.from_drill(drill))
                current.append(drill)
                added += 1
        if added:
            self._emit(Domain.ORDERED_DRILLS)
        return added

    def remove_drill(self, drill_id: str) -> bool:
        with self._lock:
            kept = [e for e in self.ordered_drills if e.drill.id != drill_id]
            removed = len(kept) != len(self.ordered_drills)
            self.ordered_drills = kept
        if removed:
            self._emit(Domain.ORDERED_DRILLS)
        return removed

    def move_drill(self, from_index: int, to_index: int) -> None:
        with self._lock:
            if not 0 <= from_index < len(self.ordered_drills):
                raise IndexError(f"No drill at position {from_index}")
            entry = self.ordered_drills.pop(from_index)
            to_index = max(0, min(to_index, len(self.ordered_drills)))
            self.ordered_drills.insert(to_index, entry)
        self._emit(Domain.ORDERED_DRILLS)

    def update_drill(
        self,
        drill_id: str,
        sets: int | None = None,
        reps: int | None = None,
        duration: int | None = None,
        sets_done: int | None = None,
        is_completed: bool | None = None,
    ) -> SessionDrill:
        with self._lock:
            entry = next((e for e in self.ordered_drills if e.drill.id == drill_id), None)
            if entry is None:
                raise KeyError(drill_id)
            if sets is not None:
                entry.total_sets = max(0, sets)
            if reps is not None:
                entry.total_reps = max(0, reps)
            if duration is not None:
                entry.total_duration = max(0, duration)
            if sets_done is not None:
                entry.sets_done = max(0, min(sets_done, entry.total_sets)) if entry.total_sets else max(0, sets_done)
            if is_completed is not None:
                entry.is_completed = is_completed
            elif entry.total_sets and entry.sets_done >= entry.total_sets:
                entry.is_completed = True
        self._emit(Domain.ORDERED_DRILLS)
        return entry

    def load_session(self, plan: SessionPlan) -> None:
        with self._lock:
            self.session_id = plan.session_id
            self.ordered_drills = [SessionDrill.from_drill(d) for d in _dedupe(plan.drills)]
        logger.info("Loaded session with %d drills", len(plan.drills))
        self._emit(Domain.ORDERED_DRILLS)

    # Saved groups and the liked group

    def _group(self, group_id: str) -> DrillGroup | None:
        if group_id == self.liked_group.id:
            return self.liked_group
        return next((g for g in self.saved_groups if g.id == group_id), None)

    def create_group(self, name: str, description: str = "") -> DrillGroup:
        name = name.strip()
        if not name:
            raise ValueError("Group name is required.")
        group = DrillGroup(name=name, description=description)
        with self._lock:
            self.saved_groups.append(group)
        self._emit(Domain.SAVED_DRILLS)
        return group

    def rename_group(self, group_id: str, name: str, description: str | None = None) -> DrillGroup:
        name = name.strip()
        if not name:
            raise ValueError("Group name is required.")
        with self._lock:
            group = next((g for g in self.saved_groups if g.id == group_id), None)
            if group is None:
                raise KeyError(group_id)
            group.name = name
            if description is not None:
                group.description = description
        self._emit(Domain.SAVED_DRILLS)
        return group

    def delete_group(self, group_id: str) -> bool:
        with self._lock:
            group = next((g for g in self.saved_groups if g.id == group_id), None)
            if group is None:
                return False
            self.saved_groups.remove(group)
            if group.backend_id is not None:
                self.deleted_group_ids.add(group.backend_id)
        self._emit(Domain.SAVED_DRILLS)
        return True

    def add_drills_to_group(self, group_id: str, drills: list[Drill]) -> int:
        with self._lock:
            group = self._group(group_id)
            if group is None:
                raise KeyError(group_id)
            added = 0
            for drill in drills:
                if _contains(group.drills, drill):
                    continue
                group.drills.append(drill)
                added += 1
            group.drills = _dedupe(group.drills)
            domain = Domain.LIKED_DRILLS if group.is_liked_group else Domain.SAVED_DRILLS
        if added:
            self._emit(domain)
        return added

    def remove_drill_from_group(self, group_id: str, drill_id: str) -> bool:
        with self._lock:
            group = self._group(group_id)
            if group is None:
                raise KeyError(group_id)
            kept = [d for d in group.drills if d.id != drill_id]
            removed = len(kept) != len(group.drills)
            group.drills = kept
            domain = Domain.LIKED_DRILLS if group.is_liked_group else Domain.SAVED_DRILLS
        if removed:
            self._emit(domain)
        return removed

    def is_liked(self, drill: Drill) -> bool:
        with self._lock:
            return _contains(self.liked_group.drills, drill)

    def like_drill(self, drill: Drill) -> bool:
        return self.add_drills_to_group(self.liked_group.id, [drill]) > 0

    def unlike_drill(self, drill: Drill) -> bool:
        with self._lock:
            kept = [d for d in self.liked_group.drills if d.id != drill.id and d.title != drill.title]
            removed = len(kept) != len(self.liked_group.drills)
            self.liked_group.drills = kept
        if removed:
            self._emit(Domain.LIKED_DRILLS)
        return removed

    def toggle_like(self, drill: Drill) -> bool:
        if self.is_liked(drill):
            self.unlike_drill(drill)
            return False
        self.like_drill(drill)
        return True

    # Saved filters

    def save_filter(self, name: str, preferences: Preferences) -> SavedFilter:
        name = name.strip()
        if not name:
            raise ValueError("Filter name is required.")
        saved = SavedFilter(
            name=name,
            saved_time=preferences.time,
            saved_equipment=frozenset(preferences.equipment),
            saved_training_style=preferences.training_style,
            saved_location=preferences.location,
            saved_difficulty=preferences.difficulty,
        )
        with self._lock:
            self.saved_filters.append(saved)
        self._emit(Domain.SAVED_FILTERS)
        return saved

    def delete_filter(self, filter_id: str) -> bool:
        with self._lock:
            kept = [f for f in self.saved_filters if f.id != filter_id]
            removed = len(kept) != len(self.saved_filters)
            self.saved_filters = kept
        if removed:
            self._emit(Domain.SAVED_FILTERS)
        return removed

    # Completed sessions and streaks

    def already_completed_on(self, day: datetime) -> bool:
        with self._lock:
            return any(s.date.date() == day.date() for s in self.completed_sessions)

    def record_completed_session(
        self, drills: list[SessionDrill] | None = None, date: datetime | None = None
    ) -> CompletedSession:
        when = date or datetime.now(timezone.utc)
        with self._lock:
            entries = [replace(e) for e in (drills if drills is not None else self.ordered_drills)]
            session = CompletedSession(
                date=when,
                drills=entries,
                total_completed_drills=sum(1 for e in entries if e.is_completed),
                total_drills=len(entries),
            )
            previous_days = {s.date.date() for s in self.completed_sessions}
            if when.date() not in previous_days:
                if (when - timedelta(days=1)).date() in previous_days:
                    self.progress.current_streak += 1
                else:
                    self.progress.current_streak = 1
            self.progress.highest_streak = max(self.progress.highest_streak, self.progress.current_streak)
            if session.fully_completed:
                self.progress.completed_sessions_count += 1
            self.completed_sessions.append(session)
            self.pending_sessions.append(session)
        self._emit(Domain.COMPLETED_SESSIONS, Domain.PROGRESS_HISTORY)
        return session

    def set_streak(self, current_streak: int) -> None:
        with self._lock:
            self.progress.current_streak = max(0, current_streak)
            if self.progress.current_streak > self.progress.highest_streak:
                self.progress.highest_streak = self.progress.current_streak
        self._emit(Domain.PROGRESS_HISTORY)

    # Push bookkeeping used by the coordinator

    def pending_completed_sessions(self) -> list[CompletedSession]:
        with self._lock:
            return list(self.pending_sessions)

    def acknowledge_completed_session(self, session: CompletedSession) -> None:
        with self._lock:
            self.pending_sessions = [s for s in self.pending_sessions if s is not session]

    def acknowledge_deleted_groups(self, backend_ids: set[int]) -> None:
        with self._lock:
            self.deleted_group_ids -= backend_ids

    def apply_group_backend_ids(self, mapping: dict[str, int]) -> None:
        with self._lock:
            for group in [self.liked_group, *self.saved_groups]:
                if group.id in mapping:
                    group.backend_id = mapping[group.id]

    def group_push_state(self) -> tuple[list[DrillGroup], DrillGroup, set[int]]:
        with self._lock:
            groups = [replace(g, drills=list(g.drills)) for g in [self.liked_group, *self.saved_groups]]
            return groups[1:], groups[0], set(self.deleted_group_ids)

    def ordered_push_state(self) -> tuple[list[SessionDrill], int | None]:
        with self._lock:
            return [replace(e) for e in self.ordered_drills], self.session_id

    def progress_state(self) -> ProgressHistory:
        with self._lock:
            return replace(self.progress)

    # Snapshots for the local cache

    def snapshot(self, domain: Domain) -> Any:
        with self._lock:
            if domain is Domain.ORDERED_DRILLS:
                return {"ordered_drills": [session_drill_to_payload(e, self.session_id) for e in self.ordered_drills]}
            if domain is Domain.SAVED_FILTERS:
                return [filter_to_payload(f) for f in self.saved_filters]
            if domain is Domain.LIKED_DRILLS:
                return group_to_payload(self.liked_group)
            if domain is Domain.SAVED_DRILLS:
                return {
                    "groups": [group_to_payload(g) for g in self.saved_groups],
                    "deleted_backend_ids": sorted(self.deleted_group_ids),
                }
            if domain is Domain.COMPLETED_SESSIONS:
                return {
                    "sessions": [completed_session_to_payload(s) for s in self.completed_sessions],
                    "pending": [completed_session_to_payload(s) for s in self.pending_sessions],
                }
            return progress_to_payload(self.progress)

    def restore(self, domain: Domain, payload: Any) -> None:
        with self._lock:
            if domain is Domain.ORDERED_DRILLS and isinstance(payload, dict):
                rows = [r for r in payload.get("ordered_drills") or [] if isinstance(r, dict)]
                self.ordered_drills = [session_drill_from_wire(r) for r in rows]
                self.session_id = next((r.get("session_id") for r in rows if r.get("session_id") is not None), None)
            elif domain is Domain.SAVED_FILTERS and isinstance(payload, list):
                self.saved_filters = [filter_from_wire(r) for r in payload if isinstance(r, dict)]
            elif domain is Domain.LIKED_DRILLS and isinstance(payload, dict):
                liked = group_from_payload(payload)
                liked.is_liked_group = True
                self.liked_group = liked
            elif domain is Domain.SAVED_DRILLS and isinstance(payload, dict):
                self.saved_groups = [group_from_payload(r) for r in payload.get("groups") or [] if isinstance(r, dict)]
                self.deleted_group_ids = {int(x) for x in payload.get("deleted_backend_ids") or [] if isinstance(x, int)}
            elif domain is Domain.COMPLETED_SESSIONS and isinstance(payload, dict):
                self.completed_sessions = [
                    completed_session_from_wire(r) for r in payload.get("sessions") or [] if isinstance(r, dict)
                ]
                self.pending_sessions = [
                    completed_session_from_wire(r) for r in payload.get("pending") or [] if isinstance(r, dict)
                ]
            elif domain is Domain.PROGRESS_HISTORY and isinstance(payload, dict):
                self.progress = progress_from_wire(payload)

    # Remote loads

    def apply_remote_ordered_drills(self, drills: list[SessionDrill]) -> None:
        with self._lock:
            self.ordered_drills = list(drills)

    def apply_remote_filters(self, filters: list[SavedFilter]) -> None:
        with self._lock:
            self.saved_filters = list(filters)

    def apply_remote_groups(self, groups: list[DrillGroup]) -> None:
        with self._lock:
            liked = next((g for g in groups if g.is_liked_group), None)
            if liked is not None:
                liked.drills = _dedupe(liked.drills)
                self.liked_group = liked
            self.saved_groups = [g for g in groups if not g.is_liked_group]
            self.deleted_group_ids = set()

    def apply_remote_completed_sessions(self, sessions: list[CompletedSession]) -> None:
        with self._lock:
            self.completed_sessions = list(sessions)

    def apply_remote_progress(self, progress: ProgressHistory) -> None:
        with self._lock:
            self.progress = progress

    def clear(self) -> None:
        with self._lock:
            self.session_id = None
            self.ordered_drills = []
            self.saved_groups = []
            self.liked_group = _new_liked_group()
            self.saved_filters = []
            self.completed_sessions = []
            self.pending_sessions = []
            self.progress = ProgressHistory()
            self.deleted_group_ids = set()
