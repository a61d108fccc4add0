import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

DEFAULT_BASE_URL = "http://127.0.0.1:8000"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    base_url: str = DEFAULT_BASE_URL
    http_timeout: float = 30.0
    sync_interval: float = 30.0
    save_delay: float = 2.0
    debounce_interval: float = 1.0
    debounce_max_keys: int = 1024
    cache_dir: Path = Path("data/cache")
    token_file: Path = Path("data/tokens.json")
    log_level: str = "INFO"


def _positive_float(value: Any, default: float) -> float:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    try:
        n = float(value)
    except (TypeError, ValueError):
        return default
    if n <= 0:
        return default
    return n


def _positive_int(value: Any, default: int) -> int:
    try:
        n = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return n if n > 0 else default


def load_settings() -> Settings:
    load_dotenv()
    defaults = Settings()
    base_url = (os.getenv("BRAVOBALL_BASE_URL") or "").strip().rstrip("/")
    level = (os.getenv("BRAVOBALL_LOG_LEVEL") or defaults.log_level).strip().upper()
    if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        level = defaults.log_level
    return Settings(
        base_url=base_url or defaults.base_url,
        http_timeout=_positive_float(os.getenv("BRAVOBALL_HTTP_TIMEOUT"), defaults.http_timeout),
        sync_interval=_positive_float(os.getenv("BRAVOBALL_SYNC_INTERVAL"), defaults.sync_interval),
        save_delay=_positive_float(os.getenv("BRAVOBALL_SAVE_DELAY"), defaults.save_delay),
        debounce_interval=_positive_float(os.getenv("BRAVOBALL_DEBOUNCE_INTERVAL"), defaults.debounce_interval),
        debounce_max_keys=_positive_int(os.getenv("BRAVOBALL_DEBOUNCE_MAX_KEYS"), defaults.debounce_max_keys),
        cache_dir=Path(os.getenv("BRAVOBALL_CACHE_DIR") or defaults.cache_dir),
        token_file=Path(os.getenv("BRAVOBALL_TOKEN_FILE") or defaults.token_file),
        log_level=level,
    )


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO), format=LOG_FORMAT)
