import logging
from collections.abc import Iterable
from typing import Any

from .client import RemoteClient
from .models import (
    CompletedSession,
    DrillGroup,
    DrillSearchPage,
    Preferences,
    ProgressHistory,
    SavedFilter,
    SessionDrill,
    SessionPlan,
    completed_session_from_wire,
    completed_session_to_payload,
    filter_from_wire,
    filter_to_payload,
    group_from_wire,
    group_request,
    progress_from_wire,
    progress_to_payload,
    search_page_from_wire,
    session_drill_from_wire,
    session_drill_to_payload,
    session_plan_from_wire,
)

logger = logging.getLogger(__name__)

ORDERED_DRILLS_ENDPOINT = "/api/sessions/ordered_drills/"
COMPLETED_SESSIONS_ENDPOINT = "/api/sessions/completed/"
PROGRESS_HISTORY_ENDPOINT = "/api/progress_history/"
FILTERS_ENDPOINT = "/api/filters/"
DRILL_GROUPS_ENDPOINT = "/api/drill-groups/"
LIKED_DRILLS_ENDPOINT = "/api/liked-drills"
SEARCH_ENDPOINT = "/api/drills/search"
PREFERENCES_ENDPOINT = "/api/session/preferences"
GENERATE_ENDPOINT = "/api/session/generate"

PREFERENCES_DEBOUNCE_KEY = "preferences_update"
INITIAL_SEARCH_LIMIT = 100


def _rows(data: Any) -> list[dict[str, Any]]:
    if not isinstance(data, list):
        return []
    return [row for row in data if isinstance(row, dict)]


def _message(data: Any, default: str) -> str:
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return default


# Ordered session drills


def fetch_ordered_drills(client: RemoteClient) -> list[SessionDrill]:
    data = client.request_json(ORDERED_DRILLS_ENDPOINT)
    return [session_drill_from_wire(row) for row in _rows(data)]


def push_ordered_drills(
    client: RemoteClient, drills: list[SessionDrill], session_id: int | None = None
) -> dict[str, Any]:
    payload = {"ordered_drills": [session_drill_to_payload(d, session_id) for d in drills]}
    client.request_json(ORDERED_DRILLS_ENDPOINT, method="PUT", body=payload)
    logger.info("Synced %d ordered session drills", len(drills))
    return payload


# Progress history and completed sessions


def fetch_progress_history(client: RemoteClient) -> ProgressHistory:
    data = client.request_json(PROGRESS_HISTORY_ENDPOINT)
    return progress_from_wire(data if isinstance(data, dict) else {})


def push_progress_history(client: RemoteClient, progress: ProgressHistory) -> dict[str, Any]:
    payload = progress_to_payload(progress)
    client.request_json(PROGRESS_HISTORY_ENDPOINT, method="PUT", body=payload)
    logger.info("Synced progress history")
    return payload


def fetch_completed_sessions(client: RemoteClient) -> list[CompletedSession]:
    data = client.request_json(COMPLETED_SESSIONS_ENDPOINT)
    sessions = [completed_session_from_wire(row) for row in _rows(data)]
    logger.info("Fetched %d completed sessions", len(sessions))
    return sessions


def push_completed_session(client: RemoteClient, session: CompletedSession) -> dict[str, Any]:
    payload = completed_session_to_payload(session)
    client.request_json(COMPLETED_SESSIONS_ENDPOINT, method="POST", body=payload, expected=(200, 201))
    logger.info("Synced completed session from %s", payload["date"])
    return payload


# Saved filters


def fetch_saved_filters(client: RemoteClient) -> list[SavedFilter]:
    data = client.request_json(FILTERS_ENDPOINT)
    return [filter_from_wire(row) for row in _rows(data)]


def push_saved_filters(client: RemoteClient, filters: list[SavedFilter]) -> list[SavedFilter]:
    existing = {f.id for f in fetch_saved_filters(client)}
    new_filters = [f for f in filters if f.id not in existing]
    if not new_filters:
        logger.debug("No new filters to sync")
        return []
    client.request_json(
        FILTERS_ENDPOINT,
        method="POST",
        body={"saved_filters": [filter_to_payload(f) for f in new_filters]},
        expected=(200, 201),
    )
    logger.info("Synced %d new filters", len(new_filters))
    return new_filters


# Drill groups and liked drills


def fetch_drill_groups(client: RemoteClient) -> list[DrillGroup]:
    data = client.request_json(DRILL_GROUPS_ENDPOINT)
    return [group_from_wire(row) for row in _rows(data)]


def create_drill_group(client: RemoteClient, group: DrillGroup) -> DrillGroup:
    data = client.request_json(DRILL_GROUPS_ENDPOINT, method="POST", body=group_request(group), expected=(200, 201))
    return group_from_wire(data if isinstance(data, dict) else {})


def update_drill_group(client: RemoteClient, backend_id: int, group: DrillGroup) -> DrillGroup:
    data = client.request_json(f"{DRILL_GROUPS_ENDPOINT}{backend_id}", method="PUT", body=group_request(group))
    return group_from_wire(data if isinstance(data, dict) else {})


def delete_drill_group(client: RemoteClient, backend_id: int) -> str:
    data = client.request_json(f"{DRILL_GROUPS_ENDPOINT}{backend_id}", method="DELETE")
    return _message(data, "Drill group deleted successfully")


def add_drills_to_group(client: RemoteClient, backend_id: int, drill_ids: list[int]) -> str:
    data = client.request_json(f"{DRILL_GROUPS_ENDPOINT}{backend_id}/drills", method="POST", body=drill_ids)
    return _message(data, "Drills added successfully")


def fetch_liked_group(client: RemoteClient) -> DrillGroup:
    data = client.request_json(LIKED_DRILLS_ENDPOINT)
    group = group_from_wire(data if isinstance(data, dict) else {})
    group.is_liked_group = True
    return group


def add_drills_to_liked_group(client: RemoteClient, drill_ids: list[int]) -> str:
    data = client.request_json(f"{LIKED_DRILLS_ENDPOINT}/add", method="POST", body=drill_ids)
    return _message(data, "Drills added successfully")


def _remote_drill_ids(group: DrillGroup) -> set[int]:
    return {d.backend_id for d in group.drills if d.backend_id is not None}


def push_drill_groups(
    client: RemoteClient,
    saved_groups: list[DrillGroup],
    liked_group: DrillGroup,
    deleted_backend_ids: Iterable[int] = (),
) -> dict[str, int]:
    """Bring the remote drill groups in line with the local liked and saved groups.

    Issues one GET for the remote state, then only the writes that differ.
    Returns local group id -> backend id for every group known remotely.
    """
    remote = fetch_drill_groups(client)
    deleted = set(deleted_backend_ids)
    for group in remote:
        if group.backend_id in deleted and not group.is_liked_group:
            delete_drill_group(client, group.backend_id)
            logger.info("Deleted group %s", group.name)

    backend_ids: dict[str, int] = {}
    liked_request = DrillGroup(
        name=liked_group.name,
        description=liked_group.description,
        drills=liked_group.drills,
        is_liked_group=True,
    )
    remote_liked = next((g for g in remote if g.is_liked_group), None)
    if remote_liked is None or remote_liked.backend_id is None:
        created = create_drill_group(client, liked_request)
        if created.backend_id is not None:
            backend_ids[liked_group.id] = created.backend_id
        logger.info("Created liked group")
    else:
        if _remote_drill_ids(remote_liked) != set(liked_group.drill_ids()):
            update_drill_group(client, remote_liked.backend_id, liked_request)
            logger.info("Updated liked group")
        backend_ids[liked_group.id] = remote_liked.backend_id

    candidates = [g for g in remote if not g.is_liked_group and g.backend_id not in deleted]
    for group in saved_groups:
        match = None
        if group.backend_id is not None:
            match = next((g for g in candidates if g.backend_id == group.backend_id), None)
        if match is None:
            match = next((g for g in candidates if g.name == group.name), None)

        if match is None or match.backend_id is None:
            created = create_drill_group(client, group)
            if created.backend_id is not None:
                backend_ids[group.id] = created.backend_id
            logger.info("Created group %s", group.name)
            continue

        candidates.remove(match)
        if _remote_drill_ids(match) != set(group.drill_ids()) or match.name != group.name:
            update_drill_group(client, match.backend_id, group)
            logger.info("Updated group %s", group.name)
        backend_ids[group.id] = match.backend_id
    return backend_ids


# Search, preferences and generation


def search_drills(
    client: RemoteClient,
    query: str = "",
    category: str | None = None,
    difficulty: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> DrillSearchPage:
    params: dict[str, Any] = {"query": query, "page": page}
    if category is not None:
        params["category"] = category
    if difficulty is not None:
        params["difficulty"] = difficulty
    initial_load = not query and category is None and difficulty is None
    params["limit"] = INITIAL_SEARCH_LIMIT if initial_load else limit
    data = client.request_json(SEARCH_ENDPOINT, params=params)
    return search_page_from_wire(data if isinstance(data, dict) else {})


def update_preferences(client: RemoteClient, preferences: Preferences) -> SessionPlan | None:
    data = client.request_json(
        PREFERENCES_ENDPOINT,
        method="PUT",
        body=preferences.to_wire(),
        debounce_key=PREFERENCES_DEBOUNCE_KEY,
    )
    session = data.get("data") if isinstance(data, dict) else None
    if not isinstance(session, dict):
        logger.info("Preferences updated, no session returned")
        return None
    plan = session_plan_from_wire(session)
    logger.info("Preferences updated, received session with %d drills", len(plan.drills))
    return plan


def generate_session(client: RemoteClient, preferences: Preferences) -> SessionPlan:
    data = client.request_json(GENERATE_ENDPOINT, method="POST", body=preferences.to_wire(), expected=(200, 201))
    return session_plan_from_wire(data if isinstance(data, dict) else {})
