from .assembler import CompletionAssembler
from .hasher import PartDigest, PartHasher
from .listing_service import ListingService
from .session_service import MultipartSessionService
from .uploader import MultipartUploader, plan_parts

__all__ = [
    "CompletionAssembler",
    "ListingService",
    "MultipartSessionService",
    "MultipartUploader",
    "PartDigest",
    "PartHasher",
    "plan_parts",
]
