import json
import logging
import threading
from typing import Any

import requests

from .debounce import DebounceGate
from .errors import AuthRequiredError, BadResponseError, DebouncedError, NetworkError
from .models import AuthTokenPair
from .storage import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, USER_EMAIL_KEY, TokenStore

logger = logging.getLogger(__name__)

LOGIN_ENDPOINT = "/login/"
REFRESH_ENDPOINT = "/refresh/"
LOGIN_DEBOUNCE_KEY = "login_request"
LOGIN_DEBOUNCE_INTERVAL = 1.0


def decode_json(content: bytes, status_code: int) -> Any:
    if not content:
        return None
    try:
        return json.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as err:
        raise BadResponseError(status_code, "Malformed JSON body.") from err


class RemoteClient:
    """Authenticated HTTP executor with at most one transparent re-login per request.

    ``session`` only needs a ``requests.Session``-style ``request()`` method,
    so a FastAPI ``TestClient`` can stand in for the network.
    """

    def __init__(
        self,
        base_url: str,
        credentials: TokenStore,
        debounce: DebounceGate | None = None,
        session: Any = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self.debounce = debounce if debounce is not None else DebounceGate()
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout
        self._refresh_lock = threading.Lock()
        self._rejected_refresh_token: str | None = None

    def url_for(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint
        return f"{self.base_url}{endpoint}"

    def _send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: Any,
        params: dict[str, Any] | None,
    ) -> Any:
        try:
            return self.session.request(
                method,
                url,
                headers=headers,
                json=body,
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as err:
            raise NetworkError(f"{method} {url} failed: {err}") from err

    def request(
        self,
        endpoint: str,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        body: Any = None,
        retry_on_401: bool = True,
        debounce_key: str | None = None,
        debounce_interval: float | None = None,
        params: dict[str, Any] | None = None,
    ) -> tuple[bytes, int]:
        if debounce_key is not None and not self.debounce.should_proceed(debounce_key, debounce_interval):
            raise DebouncedError(debounce_key)

        access_token = self.credentials.get(ACCESS_TOKEN_KEY)
        merged: dict[str, str] = {"Accept": "application/json"}
        if access_token:
            merged["Authorization"] = f"Bearer {access_token}"
        if headers:
            merged.update(headers)

        method = method.upper()
        resp = self._send(method, self.url_for(endpoint), merged, body, params)
        if resp.status_code == 401 and retry_on_401:
            logger.info("%s %s returned 401, refreshing tokens", method, endpoint)
            self.refresh_tokens(stale_access_token=access_token)
            return self.request(
                endpoint,
                method=method,
                headers=headers,
                body=body,
                retry_on_401=False,
                params=params,
            )
        return resp.content, resp.status_code

    def refresh_tokens(self, stale_access_token: str | None = None) -> AuthTokenPair:
        with self._refresh_lock:
            current = self.credentials.tokens()
            if current is not None and stale_access_token and current.access_token != stale_access_token:
                logger.debug("Tokens were rotated by a concurrent request, reusing them")
                return current

            refresh_token = self.credentials.get(REFRESH_TOKEN_KEY)
            if not refresh_token:
                raise AuthRequiredError("Access token expired and no refresh token available.")
            if refresh_token == self._rejected_refresh_token:
                raise AuthRequiredError("Refresh token was already rejected.")

            try:
                resp = self.session.request(
                    "POST",
                    self.url_for(REFRESH_ENDPOINT),
                    json={"refresh_token": refresh_token},
                    timeout=self.timeout,
                )
            except requests.RequestException as err:
                raise AuthRequiredError(f"Token refresh failed: {err}") from err

            if resp.status_code != 200:
                self._rejected_refresh_token = refresh_token
                raise AuthRequiredError(f"Failed to refresh token ({resp.status_code}).")
            try:
                data = resp.json()
                pair = AuthTokenPair(
                    access_token=str(data["access_token"]),
                    refresh_token=str(data["refresh_token"]),
                    token_type=str(data.get("token_type") or "bearer"),
                )
            except (ValueError, KeyError, TypeError, AttributeError) as err:
                self._rejected_refresh_token = refresh_token
                raise AuthRequiredError("Malformed token refresh response.") from err

            self.credentials.save_tokens(pair)
            self._rejected_refresh_token = None
            logger.info("Access token refreshed")
            return pair

    def request_json(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any = None,
        expected: tuple[int, ...] = (200,),
        **kwargs: Any,
    ) -> Any:
        content, status = self.request(endpoint, method=method, body=body, **kwargs)
        if status == 401:
            raise AuthRequiredError(f"{method.upper()} {endpoint} was rejected after token refresh.")
        if status not in expected:
            raise BadResponseError.from_response(status, content)
        return decode_json(content, status)

    def login(self, email: str, password: str) -> AuthTokenPair:
        content, status = self.request(
            LOGIN_ENDPOINT,
            method="POST",
            body={"email": email, "password": password},
            retry_on_401=False,
            debounce_key=LOGIN_DEBOUNCE_KEY,
            debounce_interval=LOGIN_DEBOUNCE_INTERVAL,
        )
        if status == 401:
            raise AuthRequiredError("Invalid credentials, please try again.")
        if status != 200:
            raise BadResponseError.from_response(status, content)
        data = decode_json(content, status)
        if not isinstance(data, dict) or not data.get("access_token"):
            raise BadResponseError(status, "Login response is missing access_token.")

        pair = AuthTokenPair(
            access_token=str(data["access_token"]),
            refresh_token=str(data.get("refresh_token") or ""),
            token_type=str(data.get("token_type") or "bearer"),
        )
        self.credentials.set(ACCESS_TOKEN_KEY, pair.access_token)
        if pair.refresh_token:
            self.credentials.set(REFRESH_TOKEN_KEY, pair.refresh_token)
        self.credentials.set(USER_EMAIL_KEY, str(data.get("email") or email))
        with self._refresh_lock:
            self._rejected_refresh_token = None
        logger.info("Logged in as %s", data.get("email") or email)
        return pair

    def logout(self) -> None:
        self.credentials.clear()
