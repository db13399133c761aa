"""S3-compatible object store client implementation.

This module provides the transport adapter for AWS S3, MinIO, and other
S3-compatible object storage services.

Dependencies:
    - boto3
    - botocore
"""

from __future__ import annotations

import logging
from typing import IO, TYPE_CHECKING, Any

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    ReadTimeoutError,
)

from s3mpu.common.errors import (
    IntegrityError,
    InvalidArgument,
    MultipartError,
    StoreRejected,
    TransportError,
    TransportTimeout,
)
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

if TYPE_CHECKING:
    from s3mpu.common.config import Settings

logger = logging.getLogger("s3mpu.transport")

INTEGRITY_ERROR_CODES = frozenset(
    {"BadDigest", "InvalidDigest", "XAmzContentSHA256Mismatch"}
)
REJECTION_ERROR_CODES = frozenset(
    {
        "NoSuchUpload",
        "NoSuchKey",
        "NoSuchBucket",
        "InvalidPart",
        "InvalidPartOrder",
        "EntityTooSmall",
        "MalformedXML",
    }
)

# InitiateOptions field -> CreateMultipartUpload parameter
_INITIATE_PARAMS = {
    "content_type": "ContentType",
    "cache_control": "CacheControl",
    "content_disposition": "ContentDisposition",
    "content_encoding": "ContentEncoding",
    "content_language": "ContentLanguage",
    "storage_class": "StorageClass",
    "server_side_encryption": "ServerSideEncryption",
    "sse_kms_key_id": "SSEKMSKeyId",
    "sse_customer_algorithm": "SSECustomerAlgorithm",
    "sse_customer_key": "SSECustomerKey",
    "sse_customer_key_md5": "SSECustomerKeyMD5",
}


def _strip_etag(etag: Any) -> str:
    return str(etag or "").strip().strip('"')


def translate_error(exc: Exception, action: str, **context: Any) -> MultipartError:
    """Map a boto3/botocore failure onto the multipart error taxonomy."""
    if isinstance(exc, (ReadTimeoutError, ConnectTimeoutError)):
        return TransportTimeout(f"Timed out trying to {action}: {exc}", **context)
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {}) or {}
        code = str(error.get("Code") or "") or None
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        detail = error.get("Message") or str(exc)
        if code in INTEGRITY_ERROR_CODES:
            return IntegrityError(f"Failed to {action}: {detail}", **context)
        if code in REJECTION_ERROR_CODES:
            return StoreRejected(
                f"Failed to {action}: {detail}", error_code=code, **context
            )
        return TransportError(
            f"Failed to {action}: {detail}",
            status_code=int(status) if status is not None else None,
            error_code=code,
            **context,
        )
    if isinstance(exc, BotoCoreError):
        return TransportError(f"Failed to {action}: {exc}", **context)
    return TransportError(f"Failed to {action}: {exc!r}", **context)


class S3ObjectStoreClient:
    """S3-compatible object store client.

    Supports AWS S3, MinIO, and other S3-compatible services.
    Uses boto3 for all storage operations.
    """

    def __init__(self, *, settings: "Settings") -> None:
        """Initialize the S3 client with configuration from settings.

        Args:
            settings: Settings containing the S3 endpoint, credentials and
                transport tuning.
        """
        self._settings = settings
        self._client = self._build_client(settings)

    @staticmethod
    def _build_client(settings: "Settings") -> Any:
        """Create a boto3 S3 client from settings."""
        config = Config(
            s3={"addressing_style": settings.S3_ADDRESSING_STYLE},
            connect_timeout=settings.S3_CONNECT_TIMEOUT,
            read_timeout=settings.S3_READ_TIMEOUT,
            retries={"max_attempts": settings.S3_MAX_ATTEMPTS, "mode": "standard"},
            max_pool_connections=settings.S3_MAX_POOL_CONNECTIONS,
        )

        return boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT_URL,
            region_name=settings.S3_REGION,
            aws_access_key_id=settings.S3_ACCESS_KEY_ID,
            aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY,
            aws_session_token=settings.S3_SESSION_TOKEN,
            use_ssl=bool(settings.S3_USE_SSL),
            config=config,
        )

    def create_multipart_upload(
        self,
        *,
        bucket: str,
        key: str,
        options: InitiateOptions,
    ) -> str:
        params: dict[str, Any] = {"Bucket": bucket, "Key": key}
        for attr, param in _INITIATE_PARAMS.items():
            value = getattr(options, attr)
            if value:
                params[param] = value
        if options.metadata:
            params["Metadata"] = dict(options.metadata)

        try:
            response = self._client.create_multipart_upload(**params)
        except Exception as exc:
            raise translate_error(
                exc, "create multipart upload", bucket=bucket, key=key
            ) from exc

        upload_id = response.get("UploadId")
        if not upload_id:
            raise StoreRejected(
                "S3 response missing UploadId", bucket=bucket, key=key
            )
        logger.debug(
            "create_multipart_upload bucket=%s key=%s upload_id=%s",
            bucket,
            key,
            upload_id,
        )
        return str(upload_id)

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
        context = {
            "bucket": bucket,
            "key": key,
            "upload_id": upload_id,
            "part_number": part_number,
        }
        try:
            response = self._client.upload_part(
                Bucket=bucket,
                Key=key,
                UploadId=upload_id,
                PartNumber=int(part_number),
                Body=body,
                ContentLength=int(content_length),
                ContentMD5=content_md5,
            )
        except Exception as exc:
            raise translate_error(exc, "upload part", **context) from exc

        etag = _strip_etag(response.get("ETag"))
        if not etag:
            raise StoreRejected("S3 response missing ETag", **context)
        return etag

    def complete_multipart_upload(
        self,
        *,
        bucket: str,
        key: str,
        upload_id: str,
        manifest: CompletionManifest,
    ) -> ObjectIdentity:
        try:
            response = self._client.complete_multipart_upload(
                Bucket=bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload=manifest.to_payload(),
            )
        except Exception as exc:
            raise translate_error(
                exc,
                "complete multipart upload",
                bucket=bucket,
                key=key,
                upload_id=upload_id,
            ) from exc

        return ObjectIdentity(
            bucket=str(response.get("Bucket") or bucket),
            key=str(response.get("Key") or key),
            etag=_strip_etag(response.get("ETag")),
            location=response.get("Location"),
            version_id=response.get("VersionId"),
        )

    def abort_multipart_upload(
        self,
        *,
        bucket: str,
        key: str,
        upload_id: str,
    ) -> None:
        try:
            self._client.abort_multipart_upload(
                Bucket=bucket,
                Key=key,
                UploadId=upload_id,
            )
        except Exception as exc:
            raise translate_error(
                exc,
                "abort multipart upload",
                bucket=bucket,
                key=key,
                upload_id=upload_id,
            ) from exc

    def list_multipart_uploads(
        self,
        *,
        bucket: str,
        prefix: str,
        delimiter: str | None,
        marker: UploadsMarker,
        max_results: int,
    ) -> ListingPage[UploadInfo, UploadsMarker]:
        params: dict[str, Any] = {
            "Bucket": bucket,
            "Prefix": prefix,
            "MaxUploads": int(max_results),
        }
        if delimiter:
            params["Delimiter"] = delimiter
        if marker.key_marker:
            params["KeyMarker"] = marker.key_marker
        if marker.upload_id_marker:
            params["UploadIdMarker"] = marker.upload_id_marker

        try:
            response = self._client.list_multipart_uploads(**params)
        except Exception as exc:
            raise translate_error(
                exc, "list multipart uploads", bucket=bucket
            ) from exc

        items = tuple(
            UploadInfo(
                key=str(entry.get("Key", "")),
                upload_id=str(entry.get("UploadId", "")),
                initiated=entry.get("Initiated"),
                storage_class=entry.get("StorageClass"),
            )
            for entry in response.get("Uploads", []) or []
        )
        prefixes = tuple(
            str(entry.get("Prefix", ""))
            for entry in response.get("CommonPrefixes", []) or []
        )
        truncated = bool(response.get("IsTruncated"))
        next_marker = UploadsMarker(
            key_marker=str(response.get("NextKeyMarker") or ""),
            upload_id_marker=str(response.get("NextUploadIdMarker") or ""),
        )
        return ListingPage(
            items=items,
            is_truncated=truncated,
            next_marker=next_marker if next_marker else None,
            common_prefixes=prefixes,
        )

    def list_parts(
        self,
        *,
        bucket: str,
        key: str,
        upload_id: str,
        marker: str,
        max_results: int,
    ) -> ListingPage[PartInfo, str]:
        params: dict[str, Any] = {
            "Bucket": bucket,
            "Key": key,
            "UploadId": upload_id,
            "MaxParts": int(max_results),
        }
        # The marker is a part number on the wire
        if marker:
            try:
                params["PartNumberMarker"] = int(marker)
            except ValueError as exc:
                raise InvalidArgument(
                    f"part marker must be a part number, got {marker!r}",
                    bucket=bucket,
                    key=key,
                    upload_id=upload_id,
                ) from exc

        try:
            response = self._client.list_parts(**params)
        except Exception as exc:
            raise translate_error(
                exc, "list parts", bucket=bucket, key=key, upload_id=upload_id
            ) from exc

        items = tuple(
            PartInfo(
                part_number=int(entry["PartNumber"]),
                etag=_strip_etag(entry.get("ETag")),
                size=int(entry.get("Size") or 0),
                last_modified=entry.get("LastModified"),
            )
            for entry in response.get("Parts", []) or []
        )
        next_marker = response.get("NextPartNumberMarker")
        return ListingPage(
            items=items,
            is_truncated=bool(response.get("IsTruncated")),
            next_marker=str(next_marker) if next_marker else None,
        )

    def head_object(self, *, bucket: str, key: str) -> ObjectHead:
        try:
            response = self._client.head_object(Bucket=bucket, Key=key)
        except Exception as exc:
            raise translate_error(
                exc, "get object metadata", bucket=bucket, key=key
            ) from exc

        size = response.get("ContentLength")
        return ObjectHead(
            size_bytes=int(size) if size is not None else 0,
            etag=_strip_etag(response.get("ETag")) or None,
            content_type=response.get("ContentType"),
        )
