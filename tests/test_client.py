import pytest
import requests

from bravoball_sync.client import REFRESH_ENDPOINT, RemoteClient
from bravoball_sync.debounce import DebounceGate
from bravoball_sync.errors import AuthRequiredError, BadResponseError, DebouncedError, NetworkError
from bravoball_sync.models import AuthTokenPair
from bravoball_sync.storage import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, USER_EMAIL_KEY, TokenStore
from conftest import BASE_URL, FakeResponse

ENDPOINT = "/api/progress_history/"
NEW_TOKENS = {"access_token": "access-2", "refresh_token": "refresh-2", "token_type": "bearer"}


def test_attaches_bearer_token(client, session) -> None:
    session.add("GET", ENDPOINT, FakeResponse(200, {"current_streak": 1}))
    content, status = client.request(ENDPOINT)
    assert status == 200
    assert content == b'{"current_streak": 1}'
    assert session.calls[0].headers["Authorization"] == "Bearer access-1"


def test_401_refreshes_and_retries_once_with_new_token(client, session, tokens) -> None:
    session.add("PUT", ENDPOINT, FakeResponse(401), FakeResponse(200, {"ok": True}))
    session.add("POST", REFRESH_ENDPOINT, FakeResponse(200, NEW_TOKENS))

    _, status = client.request(ENDPOINT, method="PUT", body={"current_streak": 3})

    assert status == 200
    puts = session.calls_to("PUT", ENDPOINT)
    assert len(puts) == 2
    assert puts[1].headers["Authorization"] == "Bearer access-2"
    assert puts[1].body == {"current_streak": 3}
    assert session.calls_to("POST", REFRESH_ENDPOINT)[0].body == {"refresh_token": "refresh-1"}
    assert tokens.tokens() == AuthTokenPair("access-2", "refresh-2")


def test_second_401_is_returned_without_another_refresh(client, session) -> None:
    session.add("GET", ENDPOINT, FakeResponse(401))
    session.add("POST", REFRESH_ENDPOINT, FakeResponse(200, NEW_TOKENS))

    _, status = client.request(ENDPOINT)

    assert status == 401
    assert len(session.calls_to("GET", ENDPOINT)) == 2
    assert len(session.calls_to("POST", REFRESH_ENDPOINT)) == 1


def test_request_json_maps_final_401_to_auth_required(client, session) -> None:
    session.add("GET", ENDPOINT, FakeResponse(401))
    session.add("POST", REFRESH_ENDPOINT, FakeResponse(200, NEW_TOKENS))
    with pytest.raises(AuthRequiredError):
        client.request_json(ENDPOINT)


def test_failed_refresh_raises_auth_required_without_retry(client, session) -> None:
    session.add("GET", ENDPOINT, FakeResponse(401))
    session.add("POST", REFRESH_ENDPOINT, FakeResponse(401, {"detail": "expired"}))

    with pytest.raises(AuthRequiredError):
        client.request(ENDPOINT)
    assert len(session.calls_to("GET", ENDPOINT)) == 1


def test_rejected_refresh_token_is_not_sent_again(client, session) -> None:
    session.add("GET", ENDPOINT, FakeResponse(401))
    session.add("POST", REFRESH_ENDPOINT, FakeResponse(401))

    with pytest.raises(AuthRequiredError):
        client.request(ENDPOINT)
    with pytest.raises(AuthRequiredError):
        client.request(ENDPOINT)
    assert len(session.calls_to("POST", REFRESH_ENDPOINT)) == 1


def test_malformed_refresh_response_is_auth_required(client, session) -> None:
    session.add("GET", ENDPOINT, FakeResponse(401))
    session.add("POST", REFRESH_ENDPOINT, FakeResponse(200, content=b"not json"))
    with pytest.raises(AuthRequiredError):
        client.request(ENDPOINT)


def test_missing_refresh_token_is_auth_required(tmp_path, session, clock) -> None:
    store = TokenStore(tmp_path / "tokens.json")
    store.set(ACCESS_TOKEN_KEY, "access-1")
    client = RemoteClient(BASE_URL, store, debounce=DebounceGate(clock=clock), session=session)
    session.add("GET", ENDPOINT, FakeResponse(401))

    with pytest.raises(AuthRequiredError):
        client.request(ENDPOINT)
    assert session.calls_to("POST", REFRESH_ENDPOINT) == []


def test_retry_disabled_returns_401_untouched(client, session) -> None:
    session.add("GET", ENDPOINT, FakeResponse(401))
    _, status = client.request(ENDPOINT, retry_on_401=False)
    assert status == 401
    assert session.calls_to("POST", REFRESH_ENDPOINT) == []


def test_refresh_reuses_tokens_rotated_by_another_request(client, session, tokens) -> None:
    tokens.save_tokens(AuthTokenPair("access-9", "refresh-9"))
    pair = client.refresh_tokens(stale_access_token="access-1")
    assert pair.access_token == "access-9"
    assert session.calls == []


def test_debounced_request_makes_no_http_call(client, session) -> None:
    session.add("PUT", ENDPOINT, FakeResponse(200, {}))
    client.request(ENDPOINT, method="PUT", debounce_key="progress")
    with pytest.raises(DebouncedError) as excinfo:
        client.request(ENDPOINT, method="PUT", debounce_key="progress")
    assert excinfo.value.key == "progress"
    assert len(session.calls) == 1


def test_login_stores_tokens_and_email(client, session, tokens) -> None:
    tokens.clear()
    session.add("POST", "/login/", FakeResponse(200, {**NEW_TOKENS, "email": "player@example.com"}))

    pair = client.login("player@example.com", "secret")

    assert pair.access_token == "access-2"
    assert tokens.get(ACCESS_TOKEN_KEY) == "access-2"
    assert tokens.get(REFRESH_TOKEN_KEY) == "refresh-2"
    assert tokens.get(USER_EMAIL_KEY) == "player@example.com"
    assert "Authorization" not in session.calls[0].headers


def test_login_invalid_credentials(client, session, tokens) -> None:
    tokens.clear()
    session.add("POST", "/login/", FakeResponse(401, {"detail": "Invalid credentials."}))
    with pytest.raises(AuthRequiredError) as excinfo:
        client.login("player@example.com", "wrong")
    assert "Invalid credentials" in excinfo.value.detail
    assert session.calls_to("POST", REFRESH_ENDPOINT) == []


def test_rapid_second_login_is_debounced_without_network(client, session, clock) -> None:
    session.add("POST", "/login/", FakeResponse(200, NEW_TOKENS))
    client.login("player@example.com", "secret")
    clock.advance(0.3)
    with pytest.raises(DebouncedError):
        client.login("player@example.com", "secret")
    assert len(session.calls_to("POST", "/login/")) == 1
    clock.advance(1.0)
    client.login("player@example.com", "secret")
    assert len(session.calls_to("POST", "/login/")) == 2


def test_unexpected_status_raises_bad_response_with_detail(client, session) -> None:
    session.add("GET", ENDPOINT, FakeResponse(500, {"detail": "database unavailable"}))
    with pytest.raises(BadResponseError) as excinfo:
        client.request_json(ENDPOINT)
    assert excinfo.value.status_code == 500
    assert excinfo.value.detail == "database unavailable"


def test_malformed_success_body_raises_bad_response(client, session) -> None:
    session.add("GET", ENDPOINT, FakeResponse(200, content=b"{oops"))
    with pytest.raises(BadResponseError):
        client.request_json(ENDPOINT)


def test_transport_failure_raises_network_error(client, session) -> None:
    session.add("GET", ENDPOINT, requests.ConnectionError("refused"))
    with pytest.raises(NetworkError):
        client.request(ENDPOINT)


def test_logout_forgets_credentials(client, tokens) -> None:
    client.logout()
    assert tokens.tokens() is None
    assert tokens.get(ACCESS_TOKEN_KEY) is None
