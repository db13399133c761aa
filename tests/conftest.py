from __future__ import annotations

import pytest

from s3mpu.common.config import Settings, get_settings
from s3mpu.services.session_service import MultipartSessionService
from tests.services.mock_storage import MockObjectStore

ENV_KEYS = (
    "S3_ENDPOINT_URL",
    "S3_REGION",
    "S3_ACCESS_KEY_ID",
    "S3_SECRET_ACCESS_KEY",
    "S3_SESSION_TOKEN",
    "S3_USE_SSL",
    "S3_ADDRESSING_STYLE",
    "S3_CONNECT_TIMEOUT",
    "S3_READ_TIMEOUT",
    "S3_MAX_ATTEMPTS",
    "S3_MAX_POOL_CONNECTIONS",
    "MPU_PART_SIZE_BYTES",
    "MPU_HASH_CHUNK_BYTES",
    "MPU_MAX_WORKERS",
    "MPU_LIST_MAX_RESULTS",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "TRACE_HTTP",
)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()  # type: ignore[attr-defined]
    yield
    get_settings.cache_clear()  # type: ignore[attr-defined]


@pytest.fixture()
def settings():
    return Settings(
        MPU_PART_SIZE_BYTES=64 * 1024,
        MPU_HASH_CHUNK_BYTES=4096,
        MPU_MAX_WORKERS=4,
    )


@pytest.fixture()
def store():
    return MockObjectStore()


@pytest.fixture()
def sessions(store, settings):
    return MultipartSessionService(store=store, settings=settings)
