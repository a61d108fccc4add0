"""In-memory stand-in for the BravoBall backend.

Serves the endpoints the sync layer talks to so the client can be run
locally (``uvicorn bravoball_sync.devserver:app``) and exercised end to end
in tests through ``fastapi.testclient.TestClient``.
"""

import threading
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from .config import configure_logging, load_settings

DEFAULT_USERS = {"demo@bravoball.dev": "demo-password"}

SEED_DRILLS: list[dict[str, Any]] = [
    {
        "id": 1,
        "title": "One-Touch Pass",
        "description": "A passing drill that improves first-touch control and quick decision-making using the wall",
        "duration": 15,
        "intensity": "medium",
        "difficulty": "beginner",
        "equipment": ["ball", "wall"],
        "instructions": ["Stand 5 yards away from a wall with the ball.", "Pass it back in one touch."],
        "tips": ["Keep your ankle locked for better pass accuracy."],
        "type": "passing",
        "sets": 3,
        "reps": 30,
        "primary_skill": {"category": "passing", "sub_skill": "short_passing"},
        "secondary_skills": [{"category": "first_touch", "sub_skill": "one_touch_control"}],
    },
    {
        "id": 2,
        "title": "Cone Dribbling",
        "description": "Improve close control dribbling through a series of cones",
        "duration": 20,
        "intensity": "medium",
        "difficulty": "beginner",
        "equipment": ["ball", "cones"],
        "instructions": ["Set up 6 cones in a zig-zag pattern.", "Dribble through the cones."],
        "tips": ["Use both feet", "Keep the ball close to your feet"],
        "type": "dribbling",
        "sets": 4,
        "reps": 5,
        "primary_skill": {"category": "dribbling", "sub_skill": "close_control"},
        "secondary_skills": [],
    },
    {
        "id": 3,
        "title": "Shooting Practice",
        "description": "Basic shooting drill to improve accuracy and power",
        "duration": 25,
        "intensity": "high",
        "difficulty": "intermediate",
        "equipment": ["ball", "goal"],
        "instructions": ["Place the ball 15 yards from goal", "Take a shot aiming for the corners"],
        "tips": ["Plant your non-kicking foot beside the ball", "Follow through with your shot"],
        "type": "shooting",
        "sets": 3,
        "reps": 10,
        "primary_skill": {"category": "shooting", "sub_skill": "power"},
        "secondary_skills": [{"category": "shooting", "sub_skill": "finishing"}],
    },
    {
        "id": 4,
        "title": "Defensive Shuffle",
        "description": "Improve defensive footwork and positioning",
        "duration": 15,
        "intensity": "high",
        "difficulty": "intermediate",
        "equipment": ["cones"],
        "instructions": ["Set up cones in a 10x10 yard square", "Shuffle between cones in defensive stance"],
        "tips": ["Stay low", "Quick, short steps"],
        "type": "defending",
        "sets": 4,
        "reps": 8,
        "primary_skill": {"category": "defending", "sub_skill": "footwork"},
        "secondary_skills": [],
    },
    {
        "id": 5,
        "title": "Juggling Challenge",
        "description": "Improve ball control and first touch",
        "duration": 10,
        "intensity": "low",
        "difficulty": "beginner",
        "equipment": ["ball"],
        "instructions": ["Drop and juggle the ball with your feet"],
        "tips": ["Use the laces area of your foot", "Stay balanced"],
        "type": "first_touch",
        "sets": 5,
        "reps": 20,
        "primary_skill": {"category": "first_touch", "sub_skill": "juggling"},
        "secondary_skills": [],
    },
    {
        "id": 6,
        "title": "Long Passing Practice",
        "description": "Hit driven and lofted passes over distance",
        "duration": 20,
        "intensity": "medium",
        "difficulty": "intermediate",
        "equipment": ["ball", "cones"],
        "instructions": ["Set two cones 30 yards apart", "Strike the ball to land beside the far cone"],
        "tips": ["Lean back slightly for lofted passes"],
        "type": "passing",
        "sets": 3,
        "reps": 10,
        "primary_skill": {"category": "passing", "sub_skill": "long_passing"},
        "secondary_skills": [],
    },
    {
        "id": 7,
        "title": "1v1 Dribbling Skills",
        "description": "Beat an imaginary defender with feints and changes of pace",
        "duration": 15,
        "intensity": "high",
        "difficulty": "advanced",
        "equipment": ["ball", "cones"],
        "instructions": ["Approach the cone at speed", "Use a feint and accelerate past it"],
        "tips": ["Sell the fake with your shoulders"],
        "type": "dribbling",
        "sets": 4,
        "reps": 6,
        "primary_skill": {"category": "dribbling", "sub_skill": "1v1_moves"},
        "secondary_skills": [{"category": "dribbling", "sub_skill": "speed_dribbling"}],
    },
    {
        "id": 8,
        "title": "Wall Volleys",
        "description": "Volley the ball against a wall without letting it bounce",
        "duration": 10,
        "intensity": "medium",
        "difficulty": "advanced",
        "equipment": ["ball", "wall"],
        "instructions": ["Toss the ball at the wall", "Volley the return back before it bounces"],
        "tips": ["Keep your eyes on the ball"],
        "type": "shooting",
        "sets": 3,
        "reps": 15,
        "primary_skill": {"category": "shooting", "sub_skill": "volleying"},
        "secondary_skills": [],
    },
]


@dataclass
class UserData:
    ordered_drills: list[dict[str, Any]] = field(default_factory=list)
    completed_sessions: list[dict[str, Any]] = field(default_factory=list)
    progress: dict[str, int] = field(
        default_factory=lambda: {"current_streak": 0, "highest_streak": 0, "completed_sessions_count": 0}
    )
    filters: list[dict[str, Any]] = field(default_factory=list)
    groups: dict[int, dict[str, Any]] = field(default_factory=dict)
    session_id: int = 0


class Backend:
    """Mutable backend state, exposed on ``app.state.backend`` for tests."""

    def __init__(self, users: dict[str, str]) -> None:
        self.users = dict(users)
        self.data: dict[str, UserData] = {}
        self.access_tokens: dict[str, str] = {}
        self.refresh_tokens: dict[str, str] = {}
        self.failures: dict[str, int] = {}
        self.request_log: list[tuple[str, str]] = []
        self.lock = threading.Lock()
        self._next_group_id = 1

    def user_data(self, email: str) -> UserData:
        return self.data.setdefault(email, UserData())

    def issue_tokens(self, email: str) -> dict[str, str]:
        access = f"access-{uuid4().hex}"
        refresh = f"refresh-{uuid4().hex}"
        self.access_tokens[access] = email
        self.refresh_tokens[refresh] = email
        return {"access_token": access, "refresh_token": refresh, "token_type": "bearer"}

    def expire_access_tokens(self) -> None:
        with self.lock:
            self.access_tokens.clear()

    def revoke_refresh_tokens(self) -> None:
        with self.lock:
            self.refresh_tokens.clear()

    def next_group_id(self) -> int:
        group_id = self._next_group_id
        self._next_group_id += 1
        return group_id


def drill_by_id(drill_id: Any) -> dict[str, Any] | None:
    return next((d for d in SEED_DRILLS if d["id"] == drill_id), None)


def group_response(group_id: int, group: dict[str, Any]) -> dict[str, Any]:
    drills = [d for d in (drill_by_id(i) for i in group["drill_ids"]) if d is not None]
    return {
        "id": group_id,
        "name": group["name"],
        "description": group["description"],
        "is_liked_group": group["is_liked_group"],
        "drills": drills,
    }


def normalize_group(payload: dict[str, Any]) -> dict[str, Any]:
    name = str(payload.get("name") or "").strip()
    if not name:
        raise HTTPException(status_code=422, detail="name is required.")
    drill_ids = payload.get("drill_ids") or []
    if not isinstance(drill_ids, list):
        raise HTTPException(status_code=422, detail="drill_ids must be a list.")
    return {
        "name": name,
        "description": str(payload.get("description") or ""),
        "drill_ids": [i for i in dict.fromkeys(drill_ids) if isinstance(i, int)],
        "is_liked_group": bool(payload.get("is_liked_group", False)),
    }


def matches_skills(drill: dict[str, Any], categories: set[str]) -> bool:
    if not categories:
        return True
    skills = [drill.get("primary_skill") or {}, *(drill.get("secondary_skills") or [])]
    return any(s.get("category") in categories for s in skills)


def build_session(data: UserData, payload: dict[str, Any]) -> dict[str, Any]:
    duration = payload.get("duration") if isinstance(payload.get("duration"), int) else 60
    categories = {
        str(t.get("category")) for t in payload.get("target_skills") or [] if isinstance(t, dict) and t.get("category")
    }
    difficulty = payload.get("difficulty")
    pool = [d for d in SEED_DRILLS if matches_skills(d, categories)] or list(SEED_DRILLS)
    if difficulty:
        pool = [d for d in pool if d["difficulty"] == difficulty] or pool
    chosen: list[dict[str, Any]] = []
    total = 0
    for drill in pool:
        if chosen and total + drill["duration"] > duration:
            break
        chosen.append(drill)
        total += drill["duration"]
    data.session_id += 1
    return {
        "session_id": data.session_id,
        "total_duration": total,
        "focus_areas": sorted(categories),
        "drills": chosen,
    }


def create_app(users: dict[str, str] | None = None) -> FastAPI:
    app = FastAPI(title="BravoBall dev backend")
    backend = Backend(users if users is not None else DEFAULT_USERS)
    app.state.backend = backend

    @app.middleware("http")
    async def record_and_inject_failures(request: Request, call_next: Any) -> Any:
        backend.request_log.append((request.method, request.url.path))
        status = backend.failures.get(request.url.path)
        if status:
            return JSONResponse({"detail": "Injected failure."}, status_code=status)
        return await call_next(request)

    def current_user(authorization: str | None = Header(default=None)) -> str:
        scheme, _, token = (authorization or "").partition(" ")
        if scheme.lower() != "bearer" or not token:
            raise HTTPException(status_code=401, detail="Not authenticated.")
        with backend.lock:
            email = backend.access_tokens.get(token)
        if email is None:
            raise HTTPException(status_code=401, detail="Token expired.")
        return email

    @app.get("/health")
    def health() -> dict[str, bool]:
        return {"ok": True}

    @app.post("/login/")
    def login(payload: dict[str, Any] = Body(...)) -> dict[str, str]:
        email = str(payload.get("email") or "").strip().lower()
        password = str(payload.get("password") or "")
        if not email or backend.users.get(email) != password:
            raise HTTPException(status_code=401, detail="Invalid credentials.")
        with backend.lock:
            tokens = backend.issue_tokens(email)
        return {**tokens, "email": email}

    @app.post("/refresh/")
    def refresh(payload: dict[str, Any] = Body(...)) -> dict[str, str]:
        token = str(payload.get("refresh_token") or "")
        with backend.lock:
            email = backend.refresh_tokens.pop(token, None)
            if email is None:
                raise HTTPException(status_code=401, detail="Invalid refresh token.")
            return backend.issue_tokens(email)

    @app.get("/api/sessions/ordered_drills/")
    def get_ordered_drills(email: str = Depends(current_user)) -> list[dict[str, Any]]:
        return backend.user_data(email).ordered_drills

    @app.put("/api/sessions/ordered_drills/")
    def put_ordered_drills(payload: dict[str, Any] = Body(...), email: str = Depends(current_user)) -> dict[str, Any]:
        drills = payload.get("ordered_drills")
        if not isinstance(drills, list):
            raise HTTPException(status_code=422, detail="ordered_drills must be a list.")
        backend.user_data(email).ordered_drills = drills
        return {"status": "success", "count": len(drills)}

    @app.get("/api/sessions/completed/")
    def get_completed(email: str = Depends(current_user)) -> list[dict[str, Any]]:
        return backend.user_data(email).completed_sessions

    @app.post("/api/sessions/completed/")
    def post_completed(payload: dict[str, Any] = Body(...), email: str = Depends(current_user)) -> dict[str, Any]:
        if not payload.get("date"):
            raise HTTPException(status_code=422, detail="date is required.")
        sessions = backend.user_data(email).completed_sessions
        sessions.append(payload)
        return {"id": len(sessions), **payload}

    @app.get("/api/progress_history/")
    def get_progress(email: str = Depends(current_user)) -> dict[str, int]:
        return backend.user_data(email).progress

    @app.put("/api/progress_history/")
    def put_progress(payload: dict[str, Any] = Body(...), email: str = Depends(current_user)) -> dict[str, int]:
        data = backend.user_data(email)
        for key in data.progress:
            value = payload.get(key)
            if isinstance(value, int) and value >= 0:
                data.progress[key] = value
        return data.progress

    @app.get("/api/filters/")
    def get_filters(email: str = Depends(current_user)) -> list[dict[str, Any]]:
        return backend.user_data(email).filters

    @app.post("/api/filters/")
    def post_filters(payload: dict[str, Any] = Body(...), email: str = Depends(current_user)) -> list[dict[str, Any]]:
        filters = payload.get("saved_filters")
        if not isinstance(filters, list):
            raise HTTPException(status_code=422, detail="saved_filters must be a list.")
        data = backend.user_data(email)
        known = {f.get("id") for f in data.filters}
        data.filters.extend(f for f in filters if isinstance(f, dict) and f.get("id") not in known)
        return data.filters

    @app.get("/api/drill-groups/")
    def list_groups(email: str = Depends(current_user)) -> list[dict[str, Any]]:
        return [group_response(gid, g) for gid, g in backend.user_data(email).groups.items()]

    @app.post("/api/drill-groups/")
    def create_group(payload: dict[str, Any] = Body(...), email: str = Depends(current_user)) -> dict[str, Any]:
        group = normalize_group(payload)
        data = backend.user_data(email)
        if group["is_liked_group"] and any(g["is_liked_group"] for g in data.groups.values()):
            raise HTTPException(status_code=409, detail="Liked group already exists.")
        with backend.lock:
            group_id = backend.next_group_id()
        data.groups[group_id] = group
        return group_response(group_id, group)

    def find_group(email: str, group_id: int) -> dict[str, Any]:
        group = backend.user_data(email).groups.get(group_id)
        if group is None:
            raise HTTPException(status_code=404, detail="Drill group not found.")
        return group

    @app.get("/api/drill-groups/{group_id}")
    def get_group(group_id: int, email: str = Depends(current_user)) -> dict[str, Any]:
        return group_response(group_id, find_group(email, group_id))

    @app.put("/api/drill-groups/{group_id}")
    def update_group(
        group_id: int, payload: dict[str, Any] = Body(...), email: str = Depends(current_user)
    ) -> dict[str, Any]:
        current = find_group(email, group_id)
        group = normalize_group(payload)
        group["is_liked_group"] = current["is_liked_group"]
        backend.user_data(email).groups[group_id] = group
        return group_response(group_id, group)

    @app.delete("/api/drill-groups/{group_id}")
    def delete_group(group_id: int, email: str = Depends(current_user)) -> dict[str, str]:
        group = find_group(email, group_id)
        if group["is_liked_group"]:
            raise HTTPException(status_code=400, detail="The liked group cannot be deleted.")
        del backend.user_data(email).groups[group_id]
        return {"message": "Drill group deleted successfully"}

    @app.post("/api/drill-groups/{group_id}/drills")
    def add_group_drills(
        group_id: int, drill_ids: list[int] = Body(...), email: str = Depends(current_user)
    ) -> dict[str, str]:
        group = find_group(email, group_id)
        before = len(group["drill_ids"])
        group["drill_ids"] = list(dict.fromkeys([*group["drill_ids"], *drill_ids]))
        return {"message": f"Added {len(group['drill_ids']) - before} drills"}

    def liked_group(email: str) -> tuple[int, dict[str, Any]]:
        data = backend.user_data(email)
        for gid, group in data.groups.items():
            if group["is_liked_group"]:
                return gid, group
        with backend.lock:
            group_id = backend.next_group_id()
        group = {"name": "Liked Drills", "description": "Your favorite drills", "drill_ids": [], "is_liked_group": True}
        data.groups[group_id] = group
        return group_id, group

    @app.get("/api/liked-drills")
    def get_liked(email: str = Depends(current_user)) -> dict[str, Any]:
        return group_response(*liked_group(email))

    @app.post("/api/liked-drills/add")
    def add_liked(drill_ids: list[int] = Body(...), email: str = Depends(current_user)) -> dict[str, str]:
        _, group = liked_group(email)
        before = len(group["drill_ids"])
        group["drill_ids"] = list(dict.fromkeys([*group["drill_ids"], *drill_ids]))
        return {"message": f"Added {len(group['drill_ids']) - before} drills"}

    @app.get("/api/drills/search")
    def search(
        query: str = Query(default=""),
        category: str | None = Query(default=None),
        difficulty: str | None = Query(default=None),
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=20, ge=1, le=100),
        email: str = Depends(current_user),
    ) -> dict[str, Any]:
        needle = query.strip().lower()
        items = [
            d
            for d in SEED_DRILLS
            if (not needle or needle in d["title"].lower() or needle in d["description"].lower())
            and (category is None or matches_skills(d, {category}))
            and (difficulty is None or d["difficulty"] == difficulty)
        ]
        start = (page - 1) * limit
        return {
            "items": items[start : start + limit],
            "total": len(items),
            "page": page,
            "page_size": limit,
            "total_pages": (len(items) + limit - 1) // limit,
        }

    @app.put("/api/session/preferences")
    def put_preferences(payload: dict[str, Any] = Body(...), email: str = Depends(current_user)) -> dict[str, Any]:
        session = build_session(backend.user_data(email), payload)
        return {"status": "success", "message": "Preferences updated", "data": session}

    @app.post("/api/session/generate")
    def generate(payload: dict[str, Any] = Body(...), email: str = Depends(current_user)) -> dict[str, Any]:
        return build_session(backend.user_data(email), payload)

    return app


configure_logging(load_settings())
app = create_app()
