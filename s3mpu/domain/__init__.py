from .models import (
    MAX_LIST_RESULTS,
    MAX_PART_NUMBER,
    MIN_PART_NUMBER,
    CompletedPart,
    CompletionManifest,
    InitiateOptions,
    ListingPage,
    ObjectHead,
    ObjectIdentity,
    Part,
    PartInfo,
    UploadInfo,
    UploadsMarker,
    UploadSession,
)

__all__ = [
    "MAX_LIST_RESULTS",
    "MAX_PART_NUMBER",
    "MIN_PART_NUMBER",
    "CompletedPart",
    "CompletionManifest",
    "InitiateOptions",
    "ListingPage",
    "ObjectHead",
    "ObjectIdentity",
    "Part",
    "PartInfo",
    "UploadInfo",
    "UploadsMarker",
    "UploadSession",
]
