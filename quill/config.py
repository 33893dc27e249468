from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Tuple


DEFAULT_PING_SERVICES: Tuple[str, ...] = (
    "http://blogsearch.google.com/ping/RPC2",
    "http://rpc.pingomatic.com/",
)
DEFAULT_TAG_WORKERS = 4


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(value: Optional[str], default: Tuple[str, ...]) -> Tuple[str, ...]:
    if value is None:
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    data_path: Path = Path("data")
    secret_key: str = "dev-secret-key"
    site_url: str = "http://localhost:5000"
    site_title: str = "Quill"
    ping_enabled: bool = False
    ping_services: Tuple[str, ...] = field(default=DEFAULT_PING_SERVICES)
    ping_timeout: float = 5.0
    tag_workers: int = DEFAULT_TAG_WORKERS
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            data_path=Path(env.get("QUILL_DATA_PATH", "data")),
            secret_key=env.get("SECRET_KEY", "dev-secret-key"),
            site_url=env.get("QUILL_SITE_URL", "http://localhost:5000").rstrip("/"),
            site_title=env.get("QUILL_SITE_TITLE", "Quill"),
            ping_enabled=_env_flag(env.get("QUILL_PING_ENABLED")),
            ping_services=_env_list(env.get("QUILL_PING_SERVICES"), DEFAULT_PING_SERVICES),
            ping_timeout=float(env.get("QUILL_PING_TIMEOUT", 5.0)),
            tag_workers=max(1, int(env.get("QUILL_TAG_WORKERS", DEFAULT_TAG_WORKERS))),
            log_level=env.get("QUILL_LOG_LEVEL", "INFO").upper(),
        )
