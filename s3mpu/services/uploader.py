"""High-level multipart uploads built on the session service.

Splits a file or stream into parts, uploads them on a thread pool, and either
completes the session or (by default) aborts it on the first failure so no
billable partial upload is left behind.
"""

from __future__ import annotations

import functools
import logging
import math
import tempfile
import threading
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import IO, Any, Callable, Mapping, Optional, Union

from s3mpu.common.config import MIB, Settings
from s3mpu.common.errors import InvalidArgument, MultipartError, OperationCancelled
from s3mpu.domain.models import (
    MAX_PART_NUMBER,
    CompletedPart,
    InitiateOptions,
    ObjectIdentity,
    Part,
    UploadSession,
)
from s3mpu.infra.storage.client import ObjectStoreClient
from s3mpu.services.base import BaseService, LinkedCancel, check_cancelled
from s3mpu.services.hasher import PartHasher
from s3mpu.services.listing_service import ListingService
from s3mpu.services.session_service import MultipartSessionService
from s3mpu.services.streams import SectionReader

logger = logging.getLogger("s3mpu.uploader")

# Smallest non-final part accepted by S3-compatible stores
MIN_PART_SIZE = 5 * MIB

Options = Optional[Union[InitiateOptions, Mapping[str, Any]]]
Producer = Callable[[ThreadPoolExecutor, threading.Event, list], None]


def plan_parts(
    total_size: int, part_size: int, *, min_part_size: int = MIN_PART_SIZE
) -> list[tuple[int, int, int]]:
    """Split ``total_size`` bytes into ``(part_number, offset, length)`` ranges.

    An empty object is uploaded as a single empty part.
    """
    if total_size < 0:
        raise InvalidArgument("total_size cannot be negative")
    if part_size <= 0:
        raise InvalidArgument("part_size must be positive")
    if total_size > part_size and part_size < min_part_size:
        raise InvalidArgument(
            f"part_size must be at least {min_part_size} bytes for multi-part objects"
        )
    count = max(1, math.ceil(total_size / part_size))
    if count > MAX_PART_NUMBER:
        raise InvalidArgument(
            f"{total_size} bytes need {count} parts of {part_size} bytes; "
            f"at most {MAX_PART_NUMBER} are allowed"
        )
    return [
        (index + 1, index * part_size, min(part_size, total_size - index * part_size))
        for index in range(count)
    ]


def _discard_if_cancelled(
    spool: IO[bytes], slots: threading.BoundedSemaphore, future: Future
) -> None:
    if future.cancelled():
        spool.close()
        slots.release()


def _first_failure(futures: list[Future]) -> BaseException | None:
    """Return the root-cause failure, preferring errors over follow-on cancels."""
    errors = [
        f.exception()
        for f in futures
        if f.done() and not f.cancelled() and f.exception() is not None
    ]
    for error in errors:
        if not isinstance(error, OperationCancelled):
            return error
    return errors[0] if errors else None


class MultipartUploader(BaseService):
    """Uploads whole files and streams through concurrent part uploads."""

    def __init__(
        self,
        *,
        store: ObjectStoreClient | None = None,
        settings: Settings | None = None,
        sessions: MultipartSessionService | None = None,
        listing: ListingService | None = None,
        max_workers: int | None = None,
        min_part_size: int = MIN_PART_SIZE,
    ) -> None:
        super().__init__(store=store, settings=settings)
        self._sessions = sessions or MultipartSessionService(
            store=self._store, settings=self._settings
        )
        self._listing = listing or ListingService(
            store=self._store, settings=self._settings, sessions=self._sessions
        )
        self._max_workers = int(max_workers or self._settings.MPU_MAX_WORKERS)
        self._min_part_size = int(min_part_size)
        self._hasher = PartHasher(self._settings.MPU_HASH_CHUNK_BYTES)

    @property
    def sessions(self) -> MultipartSessionService:
        return self._sessions

    def upload_file(
        self,
        bucket: str,
        key: str,
        path: str | Path,
        *,
        part_size: int | None = None,
        options: Options = None,
        abort_on_failure: bool = True,
        cancel: threading.Event | None = None,
    ) -> ObjectIdentity:
        """Upload a local file as a multipart object."""
        path = Path(path)
        part_size = int(part_size or self._settings.MPU_PART_SIZE_BYTES)
        plan = plan_parts(
            path.stat().st_size, part_size, min_part_size=self._min_part_size
        )
        session = self._sessions.initiate(bucket, key, options, cancel=cancel)

        def produce(
            pool: ThreadPoolExecutor, stop: threading.Event, futures: list
        ) -> None:
            for number, offset, length in plan:
                futures.append(
                    pool.submit(
                        self._upload_file_section,
                        session,
                        path,
                        number,
                        offset,
                        length,
                        stop,
                    )
                )

        return self._run(
            session, produce, abort_on_failure=abort_on_failure, cancel=cancel
        )

    def upload_stream(
        self,
        bucket: str,
        key: str,
        stream: IO[bytes],
        *,
        part_size: int | None = None,
        options: Options = None,
        abort_on_failure: bool = True,
        cancel: threading.Event | None = None,
    ) -> ObjectIdentity:
        """Upload a stream of unknown length, ``part_size`` bytes per part.

        Each part is spooled (memory up to ``part_size``, then disk) while it
        is hashed; at most ``max_workers`` parts are in flight at once.
        """
        part_size = int(part_size or self._settings.MPU_PART_SIZE_BYTES)
        if part_size < self._min_part_size:
            raise InvalidArgument(
                f"part_size must be at least {self._min_part_size} bytes",
                bucket=bucket,
                key=key,
            )
        session = self._sessions.initiate(bucket, key, options, cancel=cancel)
        slots = threading.BoundedSemaphore(self._max_workers)

        def produce(
            pool: ThreadPoolExecutor, stop: threading.Event, futures: list
        ) -> None:
            number = 0
            while True:
                number += 1
                slots.acquire()
                spool = tempfile.SpooledTemporaryFile(max_size=part_size)
                try:
                    check_cancelled(stop, "reading part", **session.context())
                    digest = self._hasher.hash(
                        stream, sink=spool.write, limit=part_size, cancel=stop
                    )
                    if digest.size == 0 and number > 1:
                        spool.close()
                        slots.release()
                        return
                    if number > MAX_PART_NUMBER:
                        raise InvalidArgument(
                            f"stream needs more than {MAX_PART_NUMBER} parts of {part_size} bytes",
                            **session.context(),
                        )
                    spool.seek(0)
                    future = pool.submit(
                        self._upload_spooled,
                        session,
                        number,
                        spool,
                        digest.content_md5,
                        slots,
                        stop,
                    )
                except BaseException:
                    spool.close()
                    slots.release()
                    raise
                # A part cancelled while queued never reaches _upload_spooled
                future.add_done_callback(
                    functools.partial(_discard_if_cancelled, spool, slots)
                )
                futures.append(future)
                if digest.size < part_size:
                    return

        return self._run(
            session, produce, abort_on_failure=abort_on_failure, cancel=cancel
        )

    def resume_file(
        self,
        session: UploadSession,
        path: str | Path,
        *,
        part_size: int | None = None,
        cancel: threading.Event | None = None,
    ) -> ObjectIdentity:
        """Finish an interrupted upload of ``path`` into ``session``.

        Parts already on the store whose ETag equals the local MD5 and whose
        size matches are kept; everything else is (re-)uploaded. The session
        is left open on failure so the resume can be retried.
        """
        path = Path(path)
        part_size = int(part_size or self._settings.MPU_PART_SIZE_BYTES)
        plan = plan_parts(
            path.stat().st_size, part_size, min_part_size=self._min_part_size
        )
        existing = {
            info.part_number: info
            for info in self._listing.iter_parts(session, cancel=cancel)
        }

        kept: list[CompletedPart] = []
        pending: list[tuple[int, int, int]] = []
        with path.open("rb") as fh:
            for number, offset, length in plan:
                info = existing.get(number)
                if info is not None and info.size == length:
                    digest = self._hasher.hash(
                        SectionReader(fh, offset, length), cancel=cancel
                    )
                    if info.etag == digest.md5_hex:
                        kept.append(CompletedPart(number, info.etag))
                        continue
                pending.append((number, offset, length))

        logger.info(
            "multipart_resume bucket=%s key=%s upload_id=%s kept=%s pending=%s",
            session.bucket,
            session.key,
            session.upload_id,
            len(kept),
            len(pending),
            extra={
                "extra": {
                    **session.context(),
                    "kept": len(kept),
                    "pending": len(pending),
                }
            },
        )

        def produce(
            pool: ThreadPoolExecutor, stop: threading.Event, futures: list
        ) -> None:
            for number, offset, length in pending:
                futures.append(
                    pool.submit(
                        self._upload_file_section,
                        session,
                        path,
                        number,
                        offset,
                        length,
                        stop,
                    )
                )

        return self._run(
            session, produce, abort_on_failure=False, cancel=cancel, kept=kept
        )

    def _run(
        self,
        session: UploadSession,
        produce: Producer,
        *,
        abort_on_failure: bool,
        cancel: threading.Event | None,
        kept: list[CompletedPart] | None = None,
    ) -> ObjectIdentity:
        stop = LinkedCancel(cancel)
        parts: list[Part | CompletedPart] = list(kept or [])
        try:
            with ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="s3mpu-part"
            ) as pool:
                futures: list[Future] = []
                try:
                    produce(pool, _StopOnFailure(stop, futures), futures)
                    wait(futures, return_when=FIRST_EXCEPTION)
                    failure = _first_failure(futures)
                    if failure is not None:
                        raise failure
                    parts.extend(f.result() for f in futures)
                except BaseException as exc:
                    stop.set()
                    for future in futures:
                        future.cancel()
                    failure = _first_failure(futures)
                    if isinstance(exc, OperationCancelled) and failure is not None:
                        raise failure
                    raise
            return self._sessions.complete(session, parts, cancel=cancel)
        except BaseException as exc:
            if abort_on_failure:
                self._abort_after_failure(session, exc)
            raise

    def _abort_after_failure(self, session: UploadSession, cause: BaseException) -> None:
        logger.warning(
            "multipart_failed_aborting bucket=%s key=%s upload_id=%s error=%r",
            session.bucket,
            session.key,
            session.upload_id,
            cause,
            extra={"extra": {**session.context(), "exception": repr(cause)}},
        )
        try:
            self._sessions.abort(session)
        except MultipartError as exc:
            logger.error(
                "multipart_abort_failed bucket=%s key=%s upload_id=%s error=%s",
                session.bucket,
                session.key,
                session.upload_id,
                exc,
                extra={"extra": {**session.context(), "exception": repr(exc)}},
            )

    def _upload_file_section(
        self,
        session: UploadSession,
        path: Path,
        number: int,
        offset: int,
        length: int,
        stop: threading.Event,
    ) -> Part:
        with path.open("rb") as fh:
            return self._sessions.upload_part(
                session, number, SectionReader(fh, offset, length), cancel=stop
            )

    def _upload_spooled(
        self,
        session: UploadSession,
        number: int,
        spool: IO[bytes],
        checksum: str,
        slots: threading.BoundedSemaphore,
        stop: threading.Event,
    ) -> Part:
        try:
            return self._sessions.upload_part(
                session, number, spool, checksum, cancel=stop
            )
        finally:
            spool.close()
            slots.release()


class _StopOnFailure(threading.Event):
    """Reports set as soon as ``stop`` is set or any submitted part has failed."""

    def __init__(self, stop: threading.Event, futures: list[Future]) -> None:
        super().__init__()
        self._stop = stop
        self._futures = futures

    def is_set(self) -> bool:
        if self._stop.is_set():
            return True
        if _first_failure(self._futures) is not None:
            self._stop.set()
            return True
        return False
