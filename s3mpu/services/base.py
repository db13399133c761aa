from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Any, Generator

from s3mpu.common.config import Settings, get_settings
from s3mpu.common.errors import OperationCancelled
from s3mpu.infra.observability.metrics import LATENCY, OPERATIONS
from s3mpu.infra.storage.client import ObjectStoreClient
from s3mpu.infra.storage.s3_client import S3ObjectStoreClient


def check_cancelled(cancel: threading.Event | None, action: str, **context: Any) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelled(f"Cancelled before {action}", **context)


class LinkedCancel(threading.Event):
    """An event that also reports set when any of its parent events is set."""

    def __init__(self, *parents: threading.Event | None) -> None:
        super().__init__()
        self._parents = tuple(p for p in parents if p is not None)

    def is_set(self) -> bool:
        return super().is_set() or any(p.is_set() for p in self._parents)


class BaseService:
    """Provides the store client and guard rails shared by multipart services."""

    def __init__(
        self,
        *,
        store: ObjectStoreClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store or S3ObjectStoreClient(settings=self._settings)

    @property
    def store(self) -> ObjectStoreClient:
        return self._store

    @property
    def settings(self) -> Settings:
        return self._settings

    @contextmanager
    def _observe(self, operation: str) -> Generator[None, None, None]:
        """Record outcome and latency of one network-boundary operation."""
        start = time.perf_counter()
        try:
            yield
        except Exception as exc:
            OPERATIONS.labels(operation, type(exc).__name__).inc()
            raise
        else:
            OPERATIONS.labels(operation, "ok").inc()
        finally:
            LATENCY.labels(operation).observe(time.perf_counter() - start)
