"""Error taxonomy for multipart upload operations.

Every error carries whatever part of the bucket/key/upload_id/part_number
context was known at the point of failure, so callers can decide whether to
retry a single part or abort the whole session.
"""

from __future__ import annotations

from typing import Any


class MultipartError(RuntimeError):
    """Base class for all multipart upload failures."""

    def __init__(
        self,
        message: str,
        *,
        bucket: str | None = None,
        key: str | None = None,
        upload_id: str | None = None,
        part_number: int | None = None,
    ) -> None:
        self.message = message
        self.bucket = bucket
        self.key = key
        self.upload_id = upload_id
        self.part_number = part_number
        super().__init__(self._render())

    def context(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for name in ("bucket", "key", "upload_id", "part_number"):
            value = getattr(self, name)
            if value is not None:
                payload[name] = value
        return payload

    def to_dict(self) -> dict[str, Any]:
        return {"error": type(self).__name__, "message": self.message, **self.context()}

    def _render(self) -> str:
        ctx = self.context()
        if not ctx:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in ctx.items())
        return f"{self.message} ({details})"


class InvalidArgument(MultipartError, ValueError):
    """Malformed caller input, detected before anything is sent."""


class DuplicatePart(MultipartError, ValueError):
    """Two manifest entries share a part number but disagree on the ETag."""


class TransportError(MultipartError):
    """Network, HTTP or authentication failure talking to the store."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_code: str | None = None,
        **context: Any,
    ) -> None:
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message, **context)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        if self.status_code is not None:
            payload["status_code"] = self.status_code
        if self.error_code:
            payload["error_code"] = self.error_code
        return payload


class TransportTimeout(TransportError):
    """The request timed out; whether it reached the store is unknown."""


class IntegrityError(MultipartError):
    """The store reported a checksum mismatch for uploaded bytes."""


class StoreRejected(MultipartError):
    """The store understood the request and refused it (unknown upload, bad part)."""

    def __init__(self, message: str, *, error_code: str | None = None, **context: Any) -> None:
        self.error_code = error_code
        super().__init__(message, **context)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        if self.error_code:
            payload["error_code"] = self.error_code
        return payload


class SessionClosed(MultipartError):
    """The session was already completed or aborted."""


class OperationCancelled(MultipartError):
    """A cancellation signal was observed before the operation finished."""


class PartReadError(MultipartError, OSError):
    """Reading the part's data source failed mid-stream."""
