"""Value types shared by the multipart services and the transport layer.

All types here are frozen: an ``UploadSession`` is a capability token for a
remote resource, and listing markers are echoed back to the store verbatim.
Neither is ever mutated locally.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Generic, Iterator, Mapping, TypeVar

logger = logging.getLogger("s3mpu.session")

# Part numbers accepted by S3-compatible stores
MIN_PART_NUMBER = 1
MAX_PART_NUMBER = 10000
# Upper bound for listing page sizes, enforced server-side as well
MAX_LIST_RESULTS = 1000

T = TypeVar("T")
M = TypeVar("M")


@dataclass(frozen=True, slots=True)
class UploadSession:
    """Identity of one in-progress multipart upload."""

    bucket: str
    key: str
    upload_id: str

    @property
    def is_initiated(self) -> bool:
        return bool(self.bucket and self.key and self.upload_id)

    def context(self) -> dict[str, str]:
        return {"bucket": self.bucket, "key": self.key, "upload_id": self.upload_id}


@dataclass(frozen=True, slots=True)
class Part:
    """A part the store has acknowledged."""

    part_number: int
    etag: str
    size: int
    checksum: str
    sha256: str | None = None


@dataclass(frozen=True, slots=True, order=True)
class CompletedPart:
    """One (part number, ETag) entry of a completion manifest."""

    part_number: int
    etag: str


@dataclass(frozen=True, slots=True)
class CompletionManifest:
    """Parts declared at completion time, strictly ascending by part number."""

    parts: tuple[CompletedPart, ...]

    def __len__(self) -> int:
        return len(self.parts)

    def __iter__(self) -> Iterator[CompletedPart]:
        return iter(self.parts)

    def to_raw_parts(self) -> list[tuple[int, str]]:
        return [(p.part_number, p.etag) for p in self.parts]

    def to_payload(self) -> dict[str, list[dict[str, Any]]]:
        """Render the ``MultipartUpload`` structure expected by the S3 API."""
        return {
            "Parts": [
                {"ETag": p.etag, "PartNumber": int(p.part_number)} for p in self.parts
            ]
        }


@dataclass(frozen=True, slots=True)
class UploadsMarker:
    """Continuation token for upload listings. Opaque to callers."""

    key_marker: str = ""
    upload_id_marker: str = ""

    def __bool__(self) -> bool:
        return bool(self.key_marker or self.upload_id_marker)


@dataclass(frozen=True, slots=True)
class UploadInfo:
    key: str
    upload_id: str
    initiated: datetime | None = None
    storage_class: str | None = None


@dataclass(frozen=True, slots=True)
class PartInfo:
    part_number: int
    etag: str
    size: int
    last_modified: datetime | None = None


@dataclass(frozen=True, slots=True)
class ListingPage(Generic[T, M]):
    """One page of a server-side listing.

    ``is_truncated`` is the only authoritative end-of-listing signal; a page
    may be empty and still be truncated.
    """

    items: tuple[T, ...]
    is_truncated: bool
    next_marker: M | None = None
    common_prefixes: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ObjectIdentity:
    """The object produced by a successful completion."""

    bucket: str
    key: str
    etag: str
    location: str | None = None
    version_id: str | None = None
    size: int | None = None


@dataclass(frozen=True, slots=True)
class ObjectHead:
    """Metadata from a HEAD object request."""

    size_bytes: int
    etag: str | None
    content_type: str | None


@dataclass(frozen=True, slots=True)
class InitiateOptions:
    """Options recognised when initiating an upload."""

    content_type: str | None = None
    metadata: Mapping[str, str] = field(default_factory=dict)
    cache_control: str | None = None
    content_disposition: str | None = None
    content_encoding: str | None = None
    content_language: str | None = None
    storage_class: str | None = None
    server_side_encryption: str | None = None
    sse_kms_key_id: str | None = None
    sse_customer_algorithm: str | None = None
    sse_customer_key: str | None = None
    sse_customer_key_md5: str | None = None

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any] | None) -> "InitiateOptions":
        """Keep recognised keys, ignore everything else."""
        if not options:
            return cls()
        known = {f.name for f in fields(cls)}
        accepted: dict[str, Any] = {}
        for name, value in options.items():
            normalized = str(name).strip().lower().replace("-", "_")
            if normalized in known:
                accepted[normalized] = value
            else:
                logger.debug("initiate_option_ignored option=%s", name)
        if accepted.get("metadata") is None:
            accepted.pop("metadata", None)
        else:
            accepted["metadata"] = {
                str(k): str(v) for k, v in dict(accepted["metadata"]).items()
            }
        return cls(**accepted)
