import json
import logging
import re
import threading
from pathlib import Path
from typing import Any

from .models import AuthTokenPair

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"
USER_EMAIL_KEY = "user_email"

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


def read_json_file(path: Path, default: Any, lock: Any) -> Any:
    with lock:
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable JSON file %s", path)
            return default


def write_json_file(path: Path, payload: Any, lock: Any) -> None:
    with lock:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        tmp.replace(path)


class JsonFileCache:
    """Key-value local cache, one JSON document per key."""

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Invalid cache key: {key!r}")
        return self.directory / f"{key}.json"

    def get(self, key: str, default: Any = None) -> Any:
        return read_json_file(self._path(key), default, self._lock)

    def set(self, key: str, value: Any) -> None:
        write_json_file(self._path(key), value, self._lock)

    def delete(self, key: str) -> None:
        path = self._path(key)
        with self._lock:
            if path.exists():
                path.unlink()

    def clear(self) -> None:
        with self._lock:
            if not self.directory.exists():
                return
            for path in self.directory.glob("*.json"):
                path.unlink()


class TokenStore:
    """File-backed credential store holding string values by key."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()

    def _load(self) -> dict[str, str]:
        raw = read_json_file(self.path, {}, self._lock)
        if isinstance(raw, dict):
            return {str(k): str(v) for k, v in raw.items() if v is not None}
        return {}

    def get(self, key: str) -> str | None:
        value = self._load().get(key)
        return value or None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            write_json_file(self.path, data, self._lock)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if data.pop(key, None) is not None:
                write_json_file(self.path, data, self._lock)

    def clear(self) -> None:
        with self._lock:
            if self.path.exists():
                self.path.unlink()

    def tokens(self) -> AuthTokenPair | None:
        data = self._load()
        access = data.get(ACCESS_TOKEN_KEY)
        refresh = data.get(REFRESH_TOKEN_KEY)
        if not access or not refresh:
            return None
        return AuthTokenPair(access_token=access, refresh_token=refresh)

    def save_tokens(self, pair: AuthTokenPair) -> None:
        with self._lock:
            data = self._load()
            data[ACCESS_TOKEN_KEY] = pair.access_token
            data[REFRESH_TOKEN_KEY] = pair.refresh_token
            write_json_file(self.path, data, self._lock)
