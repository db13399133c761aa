from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

ENV_FILE = Path(".env")

MIB = 1024 * 1024
ADDRESSING_STYLES: tuple[str, ...] = ("path", "virtual", "auto")
LOG_FORMATS: tuple[str, ...] = ("json", "plain")


def _load_env_file() -> None:
    if not ENV_FILE.exists():
        return
    for raw_line in ENV_FILE.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "y", "on"}


def _as_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _as_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass
class Settings:
    S3_ENDPOINT_URL: str | None = None
    S3_REGION: str = "us-east-1"
    S3_ACCESS_KEY_ID: str | None = None
    S3_SECRET_ACCESS_KEY: str | None = None
    S3_SESSION_TOKEN: str | None = None
    S3_USE_SSL: bool = True
    S3_ADDRESSING_STYLE: str = "path"
    S3_CONNECT_TIMEOUT: int = 10
    S3_READ_TIMEOUT: int = 60
    S3_MAX_ATTEMPTS: int = 3
    S3_MAX_POOL_CONNECTIONS: int = 10
    MPU_PART_SIZE_BYTES: int = 8 * MIB
    MPU_HASH_CHUNK_BYTES: int = 1 * MIB
    MPU_MAX_WORKERS: int = 4
    MPU_LIST_MAX_RESULTS: int = 1000
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"
    TRACE_HTTP: bool = False

    def __post_init__(self) -> None:
        style = (self.S3_ADDRESSING_STYLE or "").strip().lower()
        if style not in ADDRESSING_STYLES:
            raise ValueError(
                f"S3_ADDRESSING_STYLE must be one of {', '.join(ADDRESSING_STYLES)}."
            )
        self.S3_ADDRESSING_STYLE = style
        fmt = (self.LOG_FORMAT or "").strip().lower()
        if fmt not in LOG_FORMATS:
            raise ValueError(f"LOG_FORMAT must be one of {', '.join(LOG_FORMATS)}.")
        self.LOG_FORMAT = fmt
        for name in (
            "S3_CONNECT_TIMEOUT",
            "S3_READ_TIMEOUT",
            "S3_MAX_ATTEMPTS",
            "S3_MAX_POOL_CONNECTIONS",
            "MPU_PART_SIZE_BYTES",
            "MPU_HASH_CHUNK_BYTES",
            "MPU_MAX_WORKERS",
            "MPU_LIST_MAX_RESULTS",
        ):
            if int(getattr(self, name)) <= 0:
                raise ValueError(f"{name} must be a positive integer.")

    @classmethod
    def from_environment(cls) -> "Settings":
        _load_env_file()
        return cls(
            S3_ENDPOINT_URL=_as_optional(os.environ.get("S3_ENDPOINT_URL")),
            S3_REGION=os.environ.get("S3_REGION", cls.S3_REGION),
            S3_ACCESS_KEY_ID=_as_optional(os.environ.get("S3_ACCESS_KEY_ID")),
            S3_SECRET_ACCESS_KEY=_as_optional(os.environ.get("S3_SECRET_ACCESS_KEY")),
            S3_SESSION_TOKEN=_as_optional(os.environ.get("S3_SESSION_TOKEN")),
            S3_USE_SSL=_as_bool(os.environ.get("S3_USE_SSL"), cls.S3_USE_SSL),
            S3_ADDRESSING_STYLE=os.environ.get(
                "S3_ADDRESSING_STYLE", cls.S3_ADDRESSING_STYLE
            ),
            S3_CONNECT_TIMEOUT=_as_int(
                os.environ.get("S3_CONNECT_TIMEOUT"), cls.S3_CONNECT_TIMEOUT
            ),
            S3_READ_TIMEOUT=_as_int(
                os.environ.get("S3_READ_TIMEOUT"), cls.S3_READ_TIMEOUT
            ),
            S3_MAX_ATTEMPTS=_as_int(
                os.environ.get("S3_MAX_ATTEMPTS"), cls.S3_MAX_ATTEMPTS
            ),
            S3_MAX_POOL_CONNECTIONS=_as_int(
                os.environ.get("S3_MAX_POOL_CONNECTIONS"), cls.S3_MAX_POOL_CONNECTIONS
            ),
            MPU_PART_SIZE_BYTES=_as_int(
                os.environ.get("MPU_PART_SIZE_BYTES"), cls.MPU_PART_SIZE_BYTES
            ),
            MPU_HASH_CHUNK_BYTES=_as_int(
                os.environ.get("MPU_HASH_CHUNK_BYTES"), cls.MPU_HASH_CHUNK_BYTES
            ),
            MPU_MAX_WORKERS=_as_int(
                os.environ.get("MPU_MAX_WORKERS"), cls.MPU_MAX_WORKERS
            ),
            MPU_LIST_MAX_RESULTS=_as_int(
                os.environ.get("MPU_LIST_MAX_RESULTS"), cls.MPU_LIST_MAX_RESULTS
            ),
            LOG_LEVEL=os.environ.get("LOG_LEVEL", cls.LOG_LEVEL).upper(),
            LOG_FORMAT=os.environ.get("LOG_FORMAT", cls.LOG_FORMAT),
            TRACE_HTTP=_as_bool(os.environ.get("TRACE_HTTP"), cls.TRACE_HTTP),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_environment()
