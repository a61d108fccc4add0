from datetime import datetime, timezone

from bravoball_sync.models import (
    CompletedSession,
    Drill,
    DrillGroup,
    Preferences,
    SessionDrill,
    completed_session_to_payload,
    drill_from_wire,
    group_request,
    search_page_from_wire,
    session_drill_from_wire,
    session_drill_to_payload,
    session_plan_from_wire,
)


def test_drill_from_wire_fills_defaults_for_nulls() -> None:
    drill = drill_from_wire({"id": 7, "title": None, "sets": None, "reps": None, "duration": None})
    assert drill.backend_id == 7
    assert drill.title == "Unnamed Drill"
    assert drill.sets == 0
    assert drill.reps == 0
    assert drill.duration == 10
    assert drill.training_style == "medium"
    assert drill.difficulty == "beginner"
    assert drill.skill == "other"


def test_drill_from_wire_maps_skills_and_intensity() -> None:
    drill = drill_from_wire(
        {
            "id": 3,
            "title": "Shooting Practice",
            "intensity": "high",
            "type": "shooting",
            "primary_skill": {"category": "shooting", "sub_skill": "power"},
            "secondary_skills": [{"category": "shooting", "sub_skill": "finishing"}, None],
        }
    )
    assert drill.skill == "shooting"
    assert drill.sub_skills == ["power", "finishing"]
    assert drill.training_style == "high"


def test_preferences_to_wire_maps_duration_and_groups_skills() -> None:
    prefs = Preferences(
        time="1h30",
        equipment=frozenset({"cones", "ball"}),
        skills=frozenset({"passing-short_passing", "passing-long_passing", "shooting-power", "broken"}),
    )
    wire = prefs.to_wire()
    assert wire["duration"] == 90
    assert wire["available_equipment"] == ["ball", "cones"]
    assert wire["target_skills"] == [
        {"category": "passing", "sub_skills": ["long_passing", "short_passing"]},
        {"category": "shooting", "sub_skills": ["power"]},
    ]


def test_unknown_time_defaults_to_one_hour() -> None:
    assert Preferences(time="3 days").duration_minutes() == 60
    assert Preferences().duration_minutes() == 60
    assert Preferences(time="2h+").duration_minutes() == 120


def test_session_drill_payload_shape() -> None:
    drill = Drill(title="Cone Dribbling", skill="dribbling", sets=4, reps=5, duration=20, backend_id=2)
    entry = SessionDrill(drill=drill, sets_done=1, total_sets=4, total_reps=5, total_duration=20)
    payload = session_drill_to_payload(entry, session_id=11)
    assert payload["drill"]["backend_id"] == 2
    assert payload["drill"]["title"] == "Cone Dribbling"
    assert payload["sets_done"] == 1
    assert payload["sets"] == 4
    assert payload["is_completed"] is False
    assert payload["session_id"] == 11

    restored = session_drill_from_wire(payload)
    assert restored.drill.id == drill.id
    assert restored.sets_done == 1
    assert restored.total_duration == 20


def test_completed_session_payload_uses_camel_case_drills() -> None:
    drill = Drill(title="Juggling Challenge", training_style="low")
    entry = SessionDrill(drill=drill, sets_done=5, total_sets=5, total_reps=20, total_duration=10, is_completed=True)
    session = CompletedSession(
        date=datetime(2025, 3, 1, 18, 30, tzinfo=timezone.utc),
        drills=[entry],
        total_completed_drills=1,
        total_drills=1,
    )
    payload = completed_session_to_payload(session)
    assert payload["date"] == "2025-03-01T18:30:00Z"
    assert payload["total_completed_drills"] == 1
    row = payload["drills"][0]
    assert row["setsDone"] == 5
    assert row["isCompleted"] is True
    assert row["drill"]["trainingStyle"] == "low"
    assert session.fully_completed


def test_group_request_sends_backend_drill_ids_only() -> None:
    group = DrillGroup(
        name="Weak foot",
        drills=[Drill(title="A", backend_id=1), Drill(title="B"), Drill(title="C", backend_id=5)],
    )
    assert group_request(group) == {
        "name": "Weak foot",
        "description": "",
        "drill_ids": [1, 5],
        "is_liked_group": False,
    }


def test_session_plan_and_search_page_decoding() -> None:
    plan = session_plan_from_wire(
        {"session_id": 4, "total_duration": 35, "focus_areas": ["passing"], "drills": [{"id": 1, "title": "X"}]}
    )
    assert plan.session_id == 4
    assert plan.drills[0].backend_id == 1

    page = search_page_from_wire({"items": [{"id": 2}], "total": 1, "page": 1, "page_size": 20, "total_pages": 1})
    assert page.total == 1
    assert page.items[0].title == "Unnamed Drill"
