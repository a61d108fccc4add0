import json
from typing import Any


class SyncError(Exception):
    """Base class for every error raised by the sync layer."""


class DebouncedError(SyncError):
    """The call was rejected by the debounce gate; nothing was sent."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Request '{key}' debounced: too soon since the last attempt.")
        self.key = key


class AuthRequiredError(SyncError):
    """Authentication is missing or could not be renewed; the user must log in again."""

    def __init__(self, detail: str = "Authentication required.") -> None:
        super().__init__(detail)
        self.detail = detail


class BadResponseError(SyncError):
    def __init__(self, status_code: int, detail: str = "") -> None:
        super().__init__(f"Unexpected response {status_code}: {detail}" if detail else f"Unexpected response {status_code}")
        self.status_code = status_code
        self.detail = detail

    @classmethod
    def from_response(cls, status_code: int, body: bytes) -> "BadResponseError":
        detail = ""
        try:
            payload: Any = json.loads(body.decode("utf-8")) if body else None
        except (UnicodeDecodeError, json.JSONDecodeError):
            payload = None
        if isinstance(payload, dict) and payload.get("detail"):
            detail = str(payload["detail"])
        elif body:
            detail = body[:200].decode("utf-8", errors="replace")
        return cls(status_code, detail)


class NetworkError(SyncError):
    """Transport-level failure: timeout, refused connection, DNS."""
