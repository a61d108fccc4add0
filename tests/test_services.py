from bravoball_sync import services
from bravoball_sync.models import Drill, DrillGroup, Preferences, SavedFilter
from conftest import FakeResponse

GROUPS = services.DRILL_GROUPS_ENDPOINT


def remote_group(group_id: int, name: str, drill_ids: list[int], liked: bool = False) -> dict:
    return {
        "id": group_id,
        "name": name,
        "description": "",
        "is_liked_group": liked,
        "drills": [{"id": i, "title": f"Drill {i}"} for i in drill_ids],
    }


def test_push_saved_filters_skips_post_when_nothing_is_new(client, session) -> None:
    known = SavedFilter(name="Known", id="f-1")
    session.add("GET", services.FILTERS_ENDPOINT, FakeResponse(200, [{"id": "f-1", "name": "Known"}]))

    assert services.push_saved_filters(client, [known]) == []
    assert session.calls_to("POST", services.FILTERS_ENDPOINT) == []


def test_push_saved_filters_posts_only_new_ones(client, session) -> None:
    known = SavedFilter(name="Known", id="f-1")
    fresh = SavedFilter(name="Fresh", id="f-2", saved_equipment=frozenset({"cones", "ball"}))
    session.add("GET", services.FILTERS_ENDPOINT, FakeResponse(200, [{"id": "f-1", "name": "Known"}]))
    session.add("POST", services.FILTERS_ENDPOINT, FakeResponse(201, []))

    assert services.push_saved_filters(client, [known, fresh]) == [fresh]
    body = session.calls_to("POST", services.FILTERS_ENDPOINT)[0].body
    assert [f["name"] for f in body["saved_filters"]] == ["Fresh"]
    assert body["saved_filters"][0]["saved_equipment"] == ["ball", "cones"]


def test_push_drill_groups_writes_only_differences(client, session) -> None:
    liked = DrillGroup(name="Liked Drills", drills=[Drill(title="A", backend_id=1)], is_liked_group=True)
    same = DrillGroup(name="Same", drills=[Drill(title="B", backend_id=2)])
    changed = DrillGroup(name="Changed", drills=[Drill(title="C", backend_id=3)])
    new = DrillGroup(name="New", drills=[Drill(title="D", backend_id=4)])
    session.add(
        "GET",
        GROUPS,
        FakeResponse(
            200,
            [
                remote_group(10, "Liked Drills", [1], liked=True),
                remote_group(11, "Same", [2]),
                remote_group(12, "Changed", [9]),
                remote_group(13, "Gone", []),
            ],
        ),
    )
    session.add("PUT", f"{GROUPS}12", FakeResponse(200, remote_group(12, "Changed", [3])))
    session.add("POST", GROUPS, FakeResponse(201, remote_group(14, "New", [4])))
    session.add("DELETE", f"{GROUPS}13", FakeResponse(200, {"message": "deleted"}))

    mapping = services.push_drill_groups(client, [same, changed, new], liked, deleted_backend_ids=[13])

    assert mapping == {liked.id: 10, same.id: 11, changed.id: 12, new.id: 14}
    assert [(c.method, c.path) for c in session.calls] == [
        ("GET", GROUPS),
        ("DELETE", f"{GROUPS}13"),
        ("PUT", f"{GROUPS}12"),
        ("POST", GROUPS),
    ]
    assert session.calls[2].body == {
        "name": "Changed",
        "description": "",
        "drill_ids": [3],
        "is_liked_group": False,
    }


def test_push_drill_groups_creates_missing_liked_group(client, session) -> None:
    liked = DrillGroup(name="Liked Drills", is_liked_group=True)
    session.add("GET", GROUPS, FakeResponse(200, []))
    session.add("POST", GROUPS, FakeResponse(201, remote_group(1, "Liked Drills", [], liked=True)))

    assert services.push_drill_groups(client, [], liked) == {liked.id: 1}
    assert session.calls_to("POST", GROUPS)[0].body["is_liked_group"] is True


def test_group_endpoint_helpers(client, session) -> None:
    session.add("POST", f"{GROUPS}5/drills", FakeResponse(200, {"message": "Added 2 drills"}))
    session.add("POST", f"{services.LIKED_DRILLS_ENDPOINT}/add", FakeResponse(200, {}))
    session.add("GET", services.LIKED_DRILLS_ENDPOINT, FakeResponse(200, remote_group(7, "Liked Drills", [1])))

    assert services.add_drills_to_group(client, 5, [1, 2]) == "Added 2 drills"
    assert services.add_drills_to_liked_group(client, [3]) == "Drills added successfully"
    liked = services.fetch_liked_group(client)
    assert liked.is_liked_group
    assert liked.backend_id == 7
    assert liked.drill_ids() == [1]


def test_search_uses_larger_limit_for_unfiltered_first_load(client, session) -> None:
    session.add("GET", services.SEARCH_ENDPOINT, FakeResponse(200, {"items": [], "total": 0}))

    services.search_drills(client)
    services.search_drills(client, query="pass", difficulty="beginner", page=2)

    first, second = session.calls_to("GET", services.SEARCH_ENDPOINT)
    assert first.params == {"query": "", "page": 1, "limit": 100}
    assert second.params == {"query": "pass", "page": 2, "difficulty": "beginner", "limit": 20}


def test_update_preferences_without_session_data_returns_none(client, session) -> None:
    session.add("PUT", services.PREFERENCES_ENDPOINT, FakeResponse(200, {"status": "success", "data": None}))
    assert services.update_preferences(client, Preferences(time="45min")) is None
    assert session.calls[0].body["duration"] == 45


def test_generate_session_decodes_plan(client, session) -> None:
    session.add(
        "POST",
        services.GENERATE_ENDPOINT,
        FakeResponse(200, {"session_id": 3, "total_duration": 20, "focus_areas": [], "drills": [{"id": 2}]}),
    )
    plan = services.generate_session(client, Preferences())
    assert plan.session_id == 3
    assert plan.drills[0].backend_id == 2
