import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import pytest

from bravoball_sync.client import RemoteClient
from bravoball_sync.debounce import DebounceGate
from bravoball_sync.models import AuthTokenPair
from bravoball_sync.storage import JsonFileCache, TokenStore

BASE_URL = "http://api.test"


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, content: bytes | None = None) -> None:
        self.status_code = status_code
        if content is None:
            content = b"" if payload is None else json.dumps(payload).encode("utf-8")
        self.content = content

    def json(self) -> Any:
        return json.loads(self.content.decode("utf-8"))


@dataclass
class Call:
    method: str
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    params: dict[str, Any] | None = None


class FakeSession:
    """Scripted stand-in for ``requests.Session``.

    Responses queue per (method, path); the last queued response repeats.
    A queued exception is raised, a queued callable is called with the Call.
    """

    def __init__(self) -> None:
        self.calls: list[Call] = []
        self.routes: dict[tuple[str, str], list[Any]] = {}

    def add(self, method: str, path: str, *responses: Any) -> None:
        self.routes.setdefault((method, path), []).extend(responses)

    def calls_to(self, method: str, path: str) -> list[Call]:
        return [c for c in self.calls if c.method == method and c.path == path]

    def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        json: Any = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> FakeResponse:
        call = Call(method, urlsplit(url).path, dict(headers or {}), json, params)
        self.calls.append(call)
        queue = self.routes.get((method, call.path))
        if not queue:
            raise AssertionError(f"Unexpected request {method} {call.path}")
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(call)
        return response


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def tokens(tmp_path: Path) -> TokenStore:
    store = TokenStore(tmp_path / "tokens.json")
    store.save_tokens(AuthTokenPair(access_token="access-1", refresh_token="refresh-1"))
    return store


@pytest.fixture
def cache(tmp_path: Path) -> JsonFileCache:
    return JsonFileCache(tmp_path / "cache")


@pytest.fixture
def client(tokens: TokenStore, session: FakeSession, clock: FakeClock) -> RemoteClient:
    return RemoteClient(BASE_URL, tokens, debounce=DebounceGate(clock=clock), session=session)
