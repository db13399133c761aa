"""Multipart upload session lifecycle.

This module owns the initiate -> upload parts -> complete/abort state machine
for one upload session at a time. Sessions are plain values; the service only
remembers which sessions it has seen reach a terminal state.
"""

from __future__ import annotations

import io
import logging
import tempfile
import threading
from collections import OrderedDict
from contextlib import ExitStack
from dataclasses import replace
from typing import IO, Any, Iterable, Mapping, Union

from s3mpu.common.config import Settings
from s3mpu.common.errors import (
    DuplicatePart,
    InvalidArgument,
    OperationCancelled,
    PartReadError,
    SessionClosed,
    StoreRejected,
    TransportError,
)
from s3mpu.domain.models import (
    MAX_PART_NUMBER,
    MIN_PART_NUMBER,
    CompletionManifest,
    InitiateOptions,
    ObjectIdentity,
    Part,
    UploadSession,
)
from s3mpu.infra.observability.metrics import PART_BYTES
from s3mpu.infra.storage.client import ObjectStoreClient
from s3mpu.services.assembler import CompletionAssembler
from s3mpu.services.base import BaseService, check_cancelled
from s3mpu.services.hasher import PartDigest, PartHasher, validate_checksum
from s3mpu.services.streams import SectionReader, is_seekable

logger = logging.getLogger("s3mpu.session")

STATE_COMPLETED = "completed"
STATE_ABORTED = "aborted"

# Closed sessions remembered per service; the oldest are forgotten first
MAX_CLOSED_SESSIONS = 10000

PartData = Union[bytes, bytearray, memoryview, IO[bytes]]


class MultipartSessionService(BaseService):
    """Application service for multipart session lifecycle management.

    Safe to share across threads: concurrent ``upload_part`` calls with
    distinct part numbers on one session may run in parallel. Retries of the
    same part number must be serialized by the caller.
    """

    def __init__(
        self,
        *,
        store: ObjectStoreClient | None = None,
        settings: Settings | None = None,
        hasher: PartHasher | None = None,
        assembler: CompletionAssembler | None = None,
        max_closed_sessions: int = MAX_CLOSED_SESSIONS,
    ) -> None:
        super().__init__(store=store, settings=settings)
        self._hasher = hasher or PartHasher(self._settings.MPU_HASH_CHUNK_BYTES)
        self._assembler = assembler or CompletionAssembler()
        self._closed: OrderedDict[UploadSession, str] = OrderedDict()
        self._max_closed = max(1, int(max_closed_sessions))
        self._lock = threading.Lock()

    def initiate(
        self,
        bucket: str,
        key: str,
        options: InitiateOptions | Mapping[str, Any] | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> UploadSession:
        """Start a new multipart upload.

        Args:
            bucket: Target bucket name.
            key: Object key of the final object.
            options: ``InitiateOptions`` or a mapping; unknown keys are ignored.
            cancel: Optional cancellation signal.

        Returns:
            UploadSession identifying the new upload.

        Raises:
            InvalidArgument: If bucket or key is empty.
            TransportError: On network or authentication failure.
        """
        bucket = (bucket or "").strip()
        if not bucket:
            raise InvalidArgument("bucket cannot be empty", key=key or None)
        if not key:
            raise InvalidArgument("key cannot be empty", bucket=bucket)
        if not isinstance(options, InitiateOptions):
            options = InitiateOptions.from_mapping(options)

        check_cancelled(cancel, "initiate", bucket=bucket, key=key)
        with self._observe("initiate"):
            upload_id = self._store.create_multipart_upload(
                bucket=bucket, key=key, options=options
            )

        session = UploadSession(bucket=bucket, key=key, upload_id=upload_id)
        logger.info(
            "multipart_initiated bucket=%s key=%s upload_id=%s",
            bucket,
            key,
            upload_id,
            extra={"extra": session.context()},
        )
        return session

    def upload_part(
        self,
        session: UploadSession,
        part_number: int,
        data: PartData,
        checksum: str | None = None,
        *,
        size: int | None = None,
        cancel: threading.Event | None = None,
    ) -> Part:
        """Upload one part of an open session.

        Args:
            session: Session returned by ``initiate`` (or recovered by listing).
            part_number: Part number in ``1..10000``.
            data: Bytes or a binary stream. Streams are read from their
                current position; seekable streams are rewound afterwards.
            checksum: Optional precomputed base64 MD5 of the part. Computed
                while streaming when absent.
            size: Number of bytes to send; defaults to the rest of the stream.
            cancel: Optional cancellation signal.

        Returns:
            Part with the store-assigned ETag.

        Raises:
            InvalidArgument: For a bad part number, checksum or size, or a
                session that was never initiated.
            SessionClosed: If the session was completed or aborted.
            IntegrityError: If the store reports a digest mismatch.
            PartReadError: If the data source fails mid-read.
        """
        self._require_open(session, "upload part")
        context = {**session.context(), "part_number": part_number}
        if isinstance(part_number, bool) or not isinstance(part_number, int):
            raise InvalidArgument("part_number must be an integer", **context)
        if not MIN_PART_NUMBER <= part_number <= MAX_PART_NUMBER:
            raise InvalidArgument(
                f"part_number must be between {MIN_PART_NUMBER} and {MAX_PART_NUMBER}",
                **context,
            )
        if size is not None and size < 0:
            raise InvalidArgument("size cannot be negative", **context)
        if checksum is not None:
            try:
                checksum = validate_checksum(checksum)
            except InvalidArgument as exc:
                raise InvalidArgument(exc.message, **context) from exc

        with ExitStack() as stack:
            try:
                body, length, digest = self._prepare_body(
                    data,
                    checksum=checksum,
                    size=size,
                    stack=stack,
                    cancel=cancel,
                    context=context,
                )
            except (PartReadError, OperationCancelled) as exc:
                raise type(exc)(exc.message, **context) from exc
            content_md5 = checksum or digest.content_md5  # type: ignore[union-attr]

            check_cancelled(cancel, "upload part", **context)
            with self._observe("upload_part"):
                etag = self._store.upload_part(
                    bucket=session.bucket,
                    key=session.key,
                    upload_id=session.upload_id,
                    part_number=part_number,
                    body=body,
                    content_length=length,
                    content_md5=content_md5,
                )

        PART_BYTES.inc(length)
        logger.debug(
            "part_uploaded bucket=%s key=%s upload_id=%s part_number=%s size=%s etag=%s",
            session.bucket,
            session.key,
            session.upload_id,
            part_number,
            length,
            etag,
        )
        return Part(
            part_number=part_number,
            etag=etag,
            size=length,
            checksum=content_md5,
            sha256=digest.sha256_hex if digest else None,
        )

    def complete(
        self,
        session: UploadSession,
        parts: CompletionManifest | Iterable[Any],
        *,
        cancel: threading.Event | None = None,
    ) -> ObjectIdentity:
        """Finalize the upload from the declared parts.

        Args:
            session: The open session.
            parts: A ``CompletionManifest`` or raw parts accepted by
                ``CompletionAssembler.build``.
            cancel: Optional cancellation signal.

        Returns:
            ObjectIdentity of the assembled object.

        Raises:
            InvalidArgument: If the manifest is empty or out of order.
            DuplicatePart: If raw parts disagree on a part's ETag.
            SessionClosed: If the session was already completed or aborted.
            StoreRejected: If the store finds a missing or mismatched part.
        """
        self._require_open(session, "complete")
        try:
            if isinstance(parts, CompletionManifest):
                self._assembler.validate(parts)
            manifest = self._assembler.build(parts)
        except (InvalidArgument, DuplicatePart) as exc:
            raise type(exc)(
                exc.message, part_number=exc.part_number, **session.context()
            ) from exc

        check_cancelled(cancel, "complete", **session.context())
        with self._observe("complete"):
            identity = self._store.complete_multipart_upload(
                bucket=session.bucket,
                key=session.key,
                upload_id=session.upload_id,
                manifest=manifest,
            )
        self._mark_closed(session, STATE_COMPLETED)

        try:
            head = self._store.head_object(bucket=identity.bucket, key=identity.key)
        except (TransportError, StoreRejected) as exc:
            logger.warning(
                "completed_object_head_failed bucket=%s key=%s error=%s",
                identity.bucket,
                identity.key,
                exc,
                extra={"extra": {**session.context(), "exception": repr(exc)}},
            )
        else:
            identity = replace(identity, size=head.size_bytes)

        logger.info(
            "multipart_completed bucket=%s key=%s upload_id=%s parts=%s size=%s",
            session.bucket,
            session.key,
            session.upload_id,
            len(manifest),
            identity.size,
            extra={"extra": {**session.context(), "parts": len(manifest)}},
        )
        return identity

    def abort(
        self,
        session: UploadSession,
        *,
        cancel: threading.Event | None = None,
    ) -> None:
        """Abort a session and discard its parts.

        Idempotent: aborting a session that is already gone returns silently.

        Raises:
            InvalidArgument: If the session was never initiated.
            TransportError: On network or authentication failure.
        """
        if not isinstance(session, UploadSession) or not session.is_initiated:
            raise InvalidArgument("session was never initiated")
        state = self.state_of(session)
        if state is not None:
            logger.debug(
                "abort_skipped bucket=%s key=%s upload_id=%s state=%s",
                session.bucket,
                session.key,
                session.upload_id,
                state,
            )
            return

        check_cancelled(cancel, "abort", **session.context())
        try:
            with self._observe("abort"):
                self._store.abort_multipart_upload(
                    bucket=session.bucket,
                    key=session.key,
                    upload_id=session.upload_id,
                )
        except StoreRejected as exc:
            if exc.error_code != "NoSuchUpload":
                raise
            logger.info(
                "multipart_already_gone bucket=%s key=%s upload_id=%s",
                session.bucket,
                session.key,
                session.upload_id,
            )
        self._mark_closed(session, STATE_ABORTED)
        logger.info(
            "multipart_aborted bucket=%s key=%s upload_id=%s",
            session.bucket,
            session.key,
            session.upload_id,
            extra={"extra": session.context()},
        )

    def state_of(self, session: UploadSession) -> str | None:
        """Return ``"completed"``/``"aborted"`` for closed sessions, else None."""
        with self._lock:
            return self._closed.get(session)

    def is_closed(self, session: UploadSession) -> bool:
        return self.state_of(session) is not None

    def _mark_closed(self, session: UploadSession, state: str) -> None:
        with self._lock:
            self._closed.setdefault(session, state)
            while len(self._closed) > self._max_closed:
                self._closed.popitem(last=False)

    def _require_open(self, session: UploadSession, action: str) -> None:
        if not isinstance(session, UploadSession) or not session.is_initiated:
            raise InvalidArgument(f"Cannot {action}: session was never initiated")
        state = self.state_of(session)
        if state is not None:
            raise SessionClosed(
                f"Cannot {action}: session is already {state}", **session.context()
            )

    def _prepare_body(
        self,
        data: PartData,
        *,
        checksum: str | None,
        size: int | None,
        stack: ExitStack,
        cancel: threading.Event | None,
        context: dict[str, Any],
    ) -> tuple[IO[bytes], int, PartDigest | None]:
        """Return a seekable body, its length and (when computed) its digest."""
        if isinstance(data, (bytes, bytearray, memoryview)):
            data = io.BytesIO(bytes(data))
        if not hasattr(data, "read"):
            raise InvalidArgument(
                f"Unsupported part data source: {type(data).__name__}", **context
            )

        if is_seekable(data):
            start = data.tell()
            stack.callback(data.seek, start)
            end = data.seek(0, io.SEEK_END)
            data.seek(start)
            available = end - start
            length = available if size is None else size
            if length > available:
                raise InvalidArgument(
                    f"data source holds {available} bytes, expected {length}",
                    **context,
                )
            body: IO[bytes] = SectionReader(data, start, length)  # type: ignore[assignment]
            digest = None
            if checksum is None:
                digest = self._hasher.hash(body, cancel=cancel)
                body.seek(0)
                if digest.size != length:
                    raise InvalidArgument(
                        f"data source holds {digest.size} bytes, expected {length}",
                        **context,
                    )
            return body, length, digest

        # Not seekable: spool through a bounded buffer so the body can be
        # rewound by the transport on retry.
        spool = stack.enter_context(
            tempfile.SpooledTemporaryFile(max_size=self._settings.MPU_PART_SIZE_BYTES)
        )
        digest = self._hasher.hash(data, sink=spool.write, limit=size, cancel=cancel)
        if size is not None and digest.size != size:
            raise InvalidArgument(
                f"data source holds {digest.size} bytes, expected {size}", **context
            )
        spool.seek(0)
        return spool, digest.size, digest
