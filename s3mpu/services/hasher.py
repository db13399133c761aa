"""Streaming digest computation for part payloads.

The hasher reads a stream once, in bounded chunks, and produces the MD5 the
store verifies (``Content-MD5``) together with a SHA-256 and the byte count.
A stream that fails mid-read yields no digest at all; retrying requires the
caller to rewind or recreate the stream.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import threading
from dataclasses import dataclass
from typing import IO, Callable

from s3mpu.common.errors import InvalidArgument, PartReadError
from s3mpu.services.base import check_cancelled

DEFAULT_CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True, slots=True)
class PartDigest:
    md5_hex: str
    sha256_hex: str
    size: int

    @property
    def content_md5(self) -> str:
        """Base64 form of the MD5, as sent in the Content-MD5 header."""
        return checksum_from_hex(self.md5_hex)


def checksum_from_hex(md5_hex: str) -> str:
    return base64.b64encode(bytes.fromhex(md5_hex)).decode("ascii")


def validate_checksum(checksum: str) -> str:
    """Ensure a caller-supplied checksum is a base64-encoded MD5 digest."""
    value = (checksum or "").strip()
    try:
        raw = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidArgument(f"checksum is not valid base64: {checksum!r}") from exc
    if len(raw) != 16:
        raise InvalidArgument("checksum must be a base64-encoded 16-byte MD5 digest")
    return value


class PartHasher:
    """Computes part digests with constant memory."""

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        if chunk_size <= 0:
            raise InvalidArgument("chunk_size must be positive")
        self._chunk_size = int(chunk_size)

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    def hash(
        self,
        stream: IO[bytes],
        *,
        sink: Callable[[bytes], object] | None = None,
        limit: int | None = None,
        cancel: threading.Event | None = None,
    ) -> PartDigest:
        """Consume ``stream`` to exhaustion (or ``limit`` bytes) and digest it.

        Args:
            stream: Binary stream to read from its current position.
            sink: Optional callable receiving every chunk read, in order.
            limit: Stop after this many bytes instead of at end of stream.
            cancel: Checked between chunks.

        Returns:
            PartDigest with MD5, SHA-256 and the number of bytes read.

        Raises:
            PartReadError: If the stream raises while being read.
            OperationCancelled: If ``cancel`` is set while hashing.
        """
        md5 = hashlib.md5(usedforsecurity=False)
        sha256 = hashlib.sha256()
        size = 0
        while limit is None or size < limit:
            check_cancelled(cancel, "hashing part")
            want = self._chunk_size if limit is None else min(self._chunk_size, limit - size)
            try:
                chunk = stream.read(want)
            except OSError as exc:
                raise PartReadError(
                    f"Failed to read part data after {size} bytes: {exc}"
                ) from exc
            if not chunk:
                break
            md5.update(chunk)
            sha256.update(chunk)
            size += len(chunk)
            if sink is not None:
                sink(chunk)
        return PartDigest(md5_hex=md5.hexdigest(), sha256_hex=sha256.hexdigest(), size=size)

    def hash_bytes(self, data: bytes) -> PartDigest:
        return PartDigest(
            md5_hex=hashlib.md5(data, usedforsecurity=False).hexdigest(),
            sha256_hex=hashlib.sha256(data).hexdigest(),
            size=len(data),
        )
