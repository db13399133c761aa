"""Object store client protocol.

This module defines the narrow interface the multipart services call
through. Implementations own signing, TLS, connection reuse and timeouts,
and must surface failures as the errors in ``s3mpu.common.errors``.
"""

from __future__ import annotations

from typing import IO, Protocol

from s3mpu.domain.models import (
    CompletionManifest,
    InitiateOptions,
    ListingPage,
    ObjectHead,
    ObjectIdentity,
    PartInfo,
    UploadInfo,
    UploadsMarker,
)


class ObjectStoreClient(Protocol):
    """Protocol defining the transport operations of the multipart protocol."""

    def create_multipart_upload(
        self,
        *,
        bucket: str,
        key: str,
        options: InitiateOptions,
    ) -> str:
        """Initialize a multipart upload session.

        Args:
            bucket: Target bucket name.
            key: Object key in the bucket.
            options: Recognised initiation options (content type, metadata, SSE).

        Returns:
            The upload ID issued by the store.

        Raises:
            TransportError: On network or authentication failure.
            StoreRejected: If the store refuses the request.
        """
        ...

    def upload_part(
        self,
        *,
        bucket: str,
        key: str,
        upload_id: str,
        part_number: int,
        body: IO[bytes],
        content_length: int,
        content_md5: str,
    ) -> str:
        """Upload one part.

        Args:
            bucket: Target bucket name.
            key: Object key in the bucket.
            upload_id: Multipart upload ID.
            part_number: Part number (1-based, max 10000).
            body: Seekable binary stream positioned at the part's first byte.
            content_length: Number of bytes to send.
            content_md5: Base64 MD5 digest the store verifies the bytes against.

        Returns:
            The ETag the store assigned to the part.

        Raises:
            IntegrityError: If the store reports a digest mismatch.
            StoreRejected: If the upload ID is unknown.
            TransportError: On network or authentication failure.
        """
        ...

    def complete_multipart_upload(
        self,
        *,
        bucket: str,
        key: str,
        upload_id: str,
        manifest: CompletionManifest,
    ) -> ObjectIdentity:
        """Assemble the declared parts into the final object.

        Raises:
            StoreRejected: If a part is missing or its ETag does not match.
            TransportError: On network or authentication failure.
        """
        ...

    def abort_multipart_upload(
        self,
        *,
        bucket: str,
        key: str,
        upload_id: str,
    ) -> None:
        """Abort a multipart upload and discard its parts.

        Raises:
            StoreRejected: If the upload ID is unknown.
            TransportError: On network or authentication failure.
        """
        ...

    def list_multipart_uploads(
        self,
        *,
        bucket: str,
        prefix: str,
        delimiter: str | None,
        marker: UploadsMarker,
        max_results: int,
    ) -> ListingPage[UploadInfo, UploadsMarker]:
        """List one page of in-progress uploads in a bucket."""
        ...

    def list_parts(
        self,
        *,
        bucket: str,
        key: str,
        upload_id: str,
        marker: str,
        max_results: int,
    ) -> ListingPage[PartInfo, str]:
        """List one page of uploaded parts for a session."""
        ...

    def head_object(self, *, bucket: str, key: str) -> ObjectHead:
        """Get object metadata without downloading the content."""
        ...
