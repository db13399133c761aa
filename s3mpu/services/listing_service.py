"""Paged listing of in-progress uploads and uploaded parts.

Markers are opaque: each page's ``next_marker`` must be passed back verbatim
with the same filters (bucket, prefix, delimiter, or session) that produced
it. Mixing a marker with a different filter set yields an undefined page;
this is the caller's responsibility and is not validated here.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterator

from s3mpu.common.config import Settings
from s3mpu.common.errors import InvalidArgument, StoreRejected
from s3mpu.domain.models import (
    MAX_LIST_RESULTS,
    ListingPage,
    PartInfo,
    UploadInfo,
    UploadsMarker,
    UploadSession,
)
from s3mpu.infra.storage.client import ObjectStoreClient
from s3mpu.services.base import BaseService, check_cancelled
from s3mpu.services.session_service import MultipartSessionService

logger = logging.getLogger("s3mpu.listing")


class ListingService(BaseService):
    """Uniform "request next page" access to server-side multipart listings."""

    def __init__(
        self,
        *,
        store: ObjectStoreClient | None = None,
        settings: Settings | None = None,
        sessions: MultipartSessionService | None = None,
    ) -> None:
        super().__init__(store=store, settings=settings)
        self._sessions = sessions

    def _page_size(self, max_results: int | None, **context) -> int:
        default = min(int(self._settings.MPU_LIST_MAX_RESULTS), MAX_LIST_RESULTS)
        if max_results is None or max_results == 0:
            return default
        if max_results < 0:
            raise InvalidArgument("max_results cannot be negative", **context)
        return min(int(max_results), MAX_LIST_RESULTS)

    def list_uploads_page(
        self,
        bucket: str,
        *,
        prefix: str = "",
        delimiter: str | None = None,
        marker: UploadsMarker | None = None,
        max_results: int | None = None,
        cancel: threading.Event | None = None,
    ) -> ListingPage[UploadInfo, UploadsMarker]:
        """Fetch one page of in-progress uploads.

        Args:
            bucket: Bucket to list.
            prefix: Only uploads whose key starts with this prefix.
            delimiter: Groups keys sharing a prefix up to the delimiter into
                ``common_prefixes``; ``None`` disables grouping.
            marker: ``next_marker`` of the previous page; ``None`` for the first.
            max_results: Requested page size, clamped to 1000. The store may
                return fewer.
            cancel: Optional cancellation signal.
        """
        bucket = (bucket or "").strip()
        if not bucket:
            raise InvalidArgument("bucket cannot be empty")
        if delimiter == "":
            delimiter = None
        page_size = self._page_size(max_results, bucket=bucket)

        check_cancelled(cancel, "list uploads", bucket=bucket)
        with self._observe("list_uploads"):
            page = self._store.list_multipart_uploads(
                bucket=bucket,
                prefix=prefix or "",
                delimiter=delimiter,
                marker=marker or UploadsMarker(),
                max_results=page_size,
            )
        logger.debug(
            "uploads_page bucket=%s prefix=%s items=%s truncated=%s",
            bucket,
            prefix,
            len(page.items),
            page.is_truncated,
        )
        return page

    def list_parts_page(
        self,
        session: UploadSession,
        *,
        marker: str | None = None,
        max_results: int | None = None,
        cancel: threading.Event | None = None,
    ) -> ListingPage[PartInfo, str]:
        """Fetch one page of parts uploaded to ``session``."""
        if not isinstance(session, UploadSession) or not session.is_initiated:
            raise InvalidArgument("Cannot list parts: session was never initiated")
        page_size = self._page_size(max_results, **session.context())
        if marker and not (marker.isascii() and marker.isdigit()):
            raise InvalidArgument(
                f"part marker must be a part number, got {marker!r}", **session.context()
            )

        check_cancelled(cancel, "list parts", **session.context())
        with self._observe("list_parts"):
            page = self._store.list_parts(
                bucket=session.bucket,
                key=session.key,
                upload_id=session.upload_id,
                marker=marker or "",
                max_results=page_size,
            )
        logger.debug(
            "parts_page bucket=%s key=%s upload_id=%s items=%s truncated=%s",
            session.bucket,
            session.key,
            session.upload_id,
            len(page.items),
            page.is_truncated,
        )
        return page

    def iter_uploads(
        self,
        bucket: str,
        *,
        prefix: str = "",
        delimiter: str | None = None,
        max_results: int | None = None,
        cancel: threading.Event | None = None,
    ) -> Iterator[UploadInfo]:
        """Yield every in-progress upload, following markers until the end."""
        marker: UploadsMarker | None = None
        while True:
            page = self.list_uploads_page(
                bucket,
                prefix=prefix,
                delimiter=delimiter,
                marker=marker,
                max_results=max_results,
                cancel=cancel,
            )
            yield from page.items
            if not page.is_truncated:
                return
            if not page.next_marker or page.next_marker == marker:
                raise StoreRejected(
                    "Truncated upload listing returned no new continuation marker",
                    bucket=bucket,
                )
            marker = page.next_marker

    def iter_parts(
        self,
        session: UploadSession,
        *,
        max_results: int | None = None,
        cancel: threading.Event | None = None,
    ) -> Iterator[PartInfo]:
        """Yield every uploaded part of ``session`` in part-number order."""
        marker: str | None = None
        while True:
            page = self.list_parts_page(
                session, marker=marker, max_results=max_results, cancel=cancel
            )
            yield from page.items
            if not page.is_truncated:
                return
            if not page.next_marker or page.next_marker == marker:
                raise StoreRejected(
                    "Truncated part listing returned no new continuation marker",
                    **session.context(),
                )
            marker = page.next_marker

    def find_sessions(
        self,
        bucket: str,
        key: str,
        *,
        cancel: threading.Event | None = None,
    ) -> list[UploadSession]:
        """Recover the sessions of in-progress uploads for exactly ``key``."""
        if not key:
            raise InvalidArgument("key cannot be empty", bucket=bucket)
        return [
            UploadSession(bucket=bucket, key=upload.key, upload_id=upload.upload_id)
            for upload in self.iter_uploads(bucket, prefix=key, cancel=cancel)
            if upload.key == key
        ]

    def abort_incomplete(
        self,
        bucket: str,
        key: str,
        *,
        cancel: threading.Event | None = None,
    ) -> int:
        """Abort every in-progress upload for ``key``; returns how many."""
        sessions = self._sessions or MultipartSessionService(
            store=self._store, settings=self._settings
        )
        found = self.find_sessions(bucket, key, cancel=cancel)
        for session in found:
            sessions.abort(session, cancel=cancel)
        if found:
            logger.info(
                "incomplete_uploads_aborted bucket=%s key=%s count=%s",
                bucket,
                key,
                len(found),
            )
        return len(found)
