from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

DEFAULT_DURATION = 10
LIKED_GROUP_NAME = "Liked Drills"
LIKED_GROUP_DESCRIPTION = "Your favorite drills"

TIME_TO_MINUTES = {
    "15min": 15,
    "30min": 30,
    "45min": 45,
    "1h": 60,
    "1h30": 90,
    "2h+": 120,
}


def new_id() -> str:
    return str(uuid4())


@dataclass(frozen=True)
class Drill:
    title: str
    skill: str = "other"
    sub_skills: list[str] = field(default_factory=list)
    sets: int = 0
    reps: int = 0
    duration: int = DEFAULT_DURATION
    description: str = ""
    instructions: list[str] = field(default_factory=list)
    tips: list[str] = field(default_factory=list)
    equipment: list[str] = field(default_factory=list)
    training_style: str = "medium"
    difficulty: str = "beginner"
    video_url: str = ""
    backend_id: int | None = None
    id: str = field(default_factory=new_id)


@dataclass
class SessionDrill:
    drill: Drill
    sets_done: int = 0
    total_sets: int = 0
    total_reps: int = 0
    total_duration: int = DEFAULT_DURATION
    is_completed: bool = False

    @classmethod
    def from_drill(cls, drill: Drill) -> "SessionDrill":
        return cls(
            drill=drill,
            total_sets=drill.sets,
            total_reps=drill.reps,
            total_duration=drill.duration,
        )


@dataclass
class DrillGroup:
    name: str
    description: str = ""
    drills: list[Drill] = field(default_factory=list)
    backend_id: int | None = None
    is_liked_group: bool = False
    id: str = field(default_factory=new_id)

    def drill_ids(self) -> list[int]:
        return [d.backend_id for d in self.drills if d.backend_id is not None]


@dataclass(frozen=True)
class SavedFilter:
    name: str
    saved_time: str | None = None
    saved_equipment: frozenset[str] = frozenset()
    saved_training_style: str | None = None
    saved_location: str | None = None
    saved_difficulty: str | None = None
    backend_id: int | None = None
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class CompletedSession:
    date: datetime
    drills: list[SessionDrill]
    total_completed_drills: int
    total_drills: int

    @property
    def fully_completed(self) -> bool:
        return self.total_drills > 0 and self.total_completed_drills == self.total_drills


@dataclass
class ProgressHistory:
    current_streak: int = 0
    highest_streak: int = 0
    completed_sessions_count: int = 0


@dataclass(frozen=True)
class AuthTokenPair:
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


@dataclass(frozen=True)
class Preferences:
    time: str | None = None
    equipment: frozenset[str] = frozenset()
    training_style: str | None = None
    location: str | None = None
    difficulty: str | None = None
    skills: frozenset[str] = frozenset()

    def duration_minutes(self) -> int:
        return TIME_TO_MINUTES.get(self.time or "", 60)

    def target_skills(self) -> list[dict[str, Any]]:
        by_category: dict[str, set[str]] = {}
        for skill in self.skills:
            category, sep, sub_skill = skill.partition("-")
            if not sep or not category or not sub_skill:
                continue
            by_category.setdefault(category, set()).add(sub_skill)
        return [
            {"category": category, "sub_skills": sorted(subs)}
            for category, subs in sorted(by_category.items())
        ]

    def to_wire(self) -> dict[str, Any]:
        return {
            "duration": self.duration_minutes(),
            "available_equipment": sorted(self.equipment),
            "training_style": self.training_style,
            "training_location": self.location,
            "difficulty": self.difficulty,
            "target_skills": self.target_skills(),
        }


@dataclass(frozen=True)
class SessionPlan:
    session_id: int | None
    total_duration: int
    focus_areas: list[str]
    drills: list[Drill]


@dataclass(frozen=True)
class DrillSearchPage:
    items: list[Drill]
    total: int
    page: int
    page_size: int
    total_pages: int


# Wire decoding. Remote payloads are snake_case and frequently carry nulls.


def _int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return default


def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _str(value: Any, default: str) -> str:
    if value is None:
        return default
    text = str(value)
    return text if text else default


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(x) for x in value if x is not None]


def _skill_parts(raw: Any) -> tuple[str, str]:
    if not isinstance(raw, dict):
        return "", ""
    return str(raw.get("category") or ""), str(raw.get("sub_skill") or "")


def drill_from_wire(row: dict[str, Any]) -> Drill:
    primary_category, primary_sub = _skill_parts(row.get("primary_skill"))
    sub_skills: list[str] = []
    if primary_sub:
        sub_skills.append(primary_sub)
    secondary = row.get("secondary_skills")
    if isinstance(secondary, list):
        for item in secondary:
            _, sub = _skill_parts(item)
            if sub:
                sub_skills.append(sub)
    if not sub_skills:
        sub_skills = _str_list(row.get("sub_skills"))
    drill_type = _str(row.get("type"), "other")
    skill = primary_category or _str(row.get("skill"), "") or drill_type
    return Drill(
        id=_str(row.get("uuid"), "") or new_id(),
        backend_id=_optional_int(row.get("id")),
        title=_str(row.get("title"), "Unnamed Drill"),
        skill=skill,
        sub_skills=sub_skills,
        sets=_int(row.get("sets"), 0),
        reps=_int(row.get("reps"), 0),
        duration=_int(row.get("duration"), DEFAULT_DURATION),
        description=_str(row.get("description"), ""),
        instructions=_str_list(row.get("instructions")),
        tips=_str_list(row.get("tips")),
        equipment=_str_list(row.get("equipment")),
        training_style=_str(row.get("intensity") or row.get("training_style"), "medium"),
        difficulty=_str(row.get("difficulty"), "beginner"),
        video_url=_str(row.get("video_url"), ""),
    )


def drill_to_payload(drill: Drill, sets: int, reps: int, duration: int) -> dict[str, Any]:
    return {
        "id": drill.id,
        "backend_id": drill.backend_id,
        "title": drill.title,
        "skill": drill.skill,
        "sub_skills": list(drill.sub_skills),
        "sets": sets,
        "reps": reps,
        "duration": duration,
        "description": drill.description,
        "instructions": list(drill.instructions),
        "tips": list(drill.tips),
        "equipment": list(drill.equipment),
        "training_style": drill.training_style,
        "difficulty": drill.difficulty,
        "video_url": drill.video_url,
    }


def drill_from_payload(row: dict[str, Any]) -> Drill:
    backend_id = _optional_int(row.get("backend_id"))
    return Drill(
        id=_str(row.get("id"), "") or new_id(),
        backend_id=backend_id,
        title=_str(row.get("title"), "Unnamed Drill"),
        skill=_str(row.get("skill"), "other"),
        sub_skills=_str_list(row.get("sub_skills")),
        sets=_int(row.get("sets"), 0),
        reps=_int(row.get("reps"), 0),
        duration=_int(row.get("duration"), DEFAULT_DURATION),
        description=_str(row.get("description"), ""),
        instructions=_str_list(row.get("instructions")),
        tips=_str_list(row.get("tips")),
        equipment=_str_list(row.get("equipment")),
        training_style=_str(row.get("training_style") or row.get("trainingStyle"), "medium"),
        difficulty=_str(row.get("difficulty"), "beginner"),
        video_url=_str(row.get("video_url"), ""),
    )


def session_drill_to_payload(entry: SessionDrill, session_id: int | None = None) -> dict[str, Any]:
    return {
        "drill": drill_to_payload(entry.drill, entry.total_sets, entry.total_reps, entry.total_duration),
        "sets_done": entry.sets_done,
        "sets": entry.total_sets,
        "reps": entry.total_reps,
        "duration": entry.total_duration,
        "is_completed": entry.is_completed,
        "session_id": session_id,
    }


def session_drill_from_wire(row: dict[str, Any]) -> SessionDrill:
    nested = row.get("drill")
    if not isinstance(nested, dict):
        return SessionDrill.from_drill(drill_from_wire(row))
    drill = drill_from_payload(nested) if "backend_id" in nested or "skill" in nested else drill_from_wire(nested)
    return SessionDrill(
        drill=drill,
        sets_done=_int(row.get("sets_done", row.get("setsDone")), 0),
        total_sets=_int(row.get("sets", row.get("totalSets")), drill.sets),
        total_reps=_int(row.get("reps", row.get("totalReps")), drill.reps),
        total_duration=_int(row.get("duration", row.get("totalDuration")), drill.duration),
        is_completed=bool(row.get("is_completed", row.get("isCompleted", False))),
    )


def _completed_drill_payload(entry: SessionDrill) -> dict[str, Any]:
    drill = entry.drill
    return {
        "drill": {
            "id": drill.id,
            "title": drill.title,
            "skill": drill.skill,
            "sets": entry.total_sets,
            "reps": entry.total_reps,
            "duration": entry.total_duration,
            "description": drill.description,
            "tips": list(drill.tips),
            "equipment": list(drill.equipment),
            "trainingStyle": drill.training_style,
            "difficulty": drill.difficulty,
        },
        "setsDone": entry.sets_done,
        "totalSets": entry.total_sets,
        "totalReps": entry.total_reps,
        "totalDuration": entry.total_duration,
        "isCompleted": entry.is_completed,
    }


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _parse_datetime(value: Any) -> datetime:
    text = str(value or "").strip()
    if not text:
        return datetime.now(timezone.utc)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def completed_session_to_payload(session: CompletedSession) -> dict[str, Any]:
    return {
        "date": _iso(session.date),
        "drills": [_completed_drill_payload(d) for d in session.drills],
        "total_completed_drills": session.total_completed_drills,
        "total_drills": session.total_drills,
    }


def completed_session_from_wire(row: dict[str, Any]) -> CompletedSession:
    drills = row.get("drills")
    return CompletedSession(
        date=_parse_datetime(row.get("date")),
        drills=[session_drill_from_wire(d) for d in drills if isinstance(d, dict)] if isinstance(drills, list) else [],
        total_completed_drills=_int(row.get("total_completed_drills", row.get("totalCompletedDrills")), 0),
        total_drills=_int(row.get("total_drills", row.get("totalDrills")), 0),
    )


def progress_to_payload(progress: ProgressHistory) -> dict[str, Any]:
    return {
        "current_streak": progress.current_streak,
        "highest_streak": progress.highest_streak,
        "completed_sessions_count": progress.completed_sessions_count,
    }


def progress_from_wire(row: dict[str, Any]) -> ProgressHistory:
    return ProgressHistory(
        current_streak=max(0, _int(row.get("current_streak"), 0)),
        highest_streak=max(0, _int(row.get("highest_streak"), 0)),
        completed_sessions_count=max(0, _int(row.get("completed_sessions_count"), 0)),
    )


def filter_to_payload(saved: SavedFilter) -> dict[str, Any]:
    return {
        "id": saved.id,
        "backend_id": saved.backend_id,
        "name": saved.name,
        "saved_time": saved.saved_time,
        "saved_equipment": sorted(saved.saved_equipment),
        "saved_training_style": saved.saved_training_style,
        "saved_location": saved.saved_location,
        "saved_difficulty": saved.saved_difficulty,
    }


def filter_from_wire(row: dict[str, Any]) -> SavedFilter:
    return SavedFilter(
        id=_str(row.get("id"), "") or new_id(),
        backend_id=_optional_int(row.get("backend_id")),
        name=_str(row.get("name"), "Untitled Filter"),
        saved_time=row.get("saved_time"),
        saved_equipment=frozenset(_str_list(row.get("saved_equipment"))),
        saved_training_style=row.get("saved_training_style"),
        saved_location=row.get("saved_location"),
        saved_difficulty=row.get("saved_difficulty"),
    )


def group_to_payload(group: DrillGroup) -> dict[str, Any]:
    return {
        "id": group.id,
        "backend_id": group.backend_id,
        "name": group.name,
        "description": group.description,
        "is_liked_group": group.is_liked_group,
        "drills": [drill_to_payload(d, d.sets, d.reps, d.duration) for d in group.drills],
    }


def group_from_payload(row: dict[str, Any]) -> DrillGroup:
    drills = row.get("drills")
    return DrillGroup(
        id=_str(row.get("id"), "") or new_id(),
        backend_id=_optional_int(row.get("backend_id")),
        name=_str(row.get("name"), "Untitled Group"),
        description=_str(row.get("description"), ""),
        is_liked_group=bool(row.get("is_liked_group", False)),
        drills=[drill_from_payload(d) for d in drills if isinstance(d, dict)] if isinstance(drills, list) else [],
    )


def group_from_wire(row: dict[str, Any]) -> DrillGroup:
    drills = row.get("drills")
    return DrillGroup(
        backend_id=_optional_int(row.get("id")),
        name=_str(row.get("name"), "Untitled Group"),
        description=_str(row.get("description"), ""),
        is_liked_group=bool(row.get("is_liked_group", False)),
        drills=[drill_from_wire(d) for d in drills if isinstance(d, dict)] if isinstance(drills, list) else [],
    )


def group_request(group: DrillGroup) -> dict[str, Any]:
    return {
        "name": group.name,
        "description": group.description,
        "drill_ids": group.drill_ids(),
        "is_liked_group": group.is_liked_group,
    }


def session_plan_from_wire(row: dict[str, Any]) -> SessionPlan:
    drills = row.get("drills")
    return SessionPlan(
        session_id=_optional_int(row.get("session_id")),
        total_duration=_int(row.get("total_duration"), 0),
        focus_areas=_str_list(row.get("focus_areas")),
        drills=[drill_from_wire(d) for d in drills if isinstance(d, dict)] if isinstance(drills, list) else [],
    )


def search_page_from_wire(row: dict[str, Any]) -> DrillSearchPage:
    items = row.get("items")
    return DrillSearchPage(
        items=[drill_from_wire(d) for d in items if isinstance(d, dict)] if isinstance(items, list) else [],
        total=_int(row.get("total"), 0),
        page=_int(row.get("page"), 1),
        page_size=_int(row.get("page_size"), 0),
        total_pages=_int(row.get("total_pages"), 0),
    )
