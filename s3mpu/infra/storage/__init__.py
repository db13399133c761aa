"""Object storage transport layer.

This module provides a protocol-based abstraction for the store the multipart
services talk to, with a boto3 implementation for S3, MinIO and other
S3-compatible services.
"""

from .client import ObjectStoreClient
from .s3_client import S3ObjectStoreClient

__all__ = [
    "ObjectStoreClient",
    "S3ObjectStoreClient",
]
