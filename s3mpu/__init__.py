"""Multipart object uploads for S3-compatible object stores."""

from s3mpu.common.errors import (
    DuplicatePart,
    IntegrityError,
    InvalidArgument,
    MultipartError,
    OperationCancelled,
    PartReadError,
    SessionClosed,
    StoreRejected,
    TransportError,
    TransportTimeout,
)
from s3mpu.domain.models import (
    CompletedPart,
    CompletionManifest,
    InitiateOptions,
    ListingPage,
    ObjectIdentity,
    Part,
    PartInfo,
    UploadInfo,
    UploadsMarker,
    UploadSession,
)
from s3mpu.services import (
    CompletionAssembler,
    ListingService,
    MultipartSessionService,
    MultipartUploader,
    PartHasher,
)

__version__ = "0.1.0"

__all__ = [
    "CompletedPart",
    "CompletionAssembler",
    "CompletionManifest",
    "DuplicatePart",
    "InitiateOptions",
    "IntegrityError",
    "InvalidArgument",
    "ListingPage",
    "ListingService",
    "MultipartError",
    "MultipartSessionService",
    "MultipartUploader",
    "ObjectIdentity",
    "OperationCancelled",
    "Part",
    "PartHasher",
    "PartInfo",
    "PartReadError",
    "SessionClosed",
    "StoreRejected",
    "TransportError",
    "TransportTimeout",
    "UploadInfo",
    "UploadsMarker",
    "UploadSession",
]
