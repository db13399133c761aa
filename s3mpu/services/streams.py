from __future__ import annotations

import io
from typing import IO


def is_seekable(stream: IO[bytes]) -> bool:
    seekable = getattr(stream, "seekable", None)
    if seekable is None:
        return False
    try:
        return bool(seekable())
    except (OSError, ValueError):
        return False


class SectionReader(io.RawIOBase):
    """Read-only window of ``length`` bytes starting at ``offset`` of ``raw``.

    Positions are relative to the window. The underlying stream is re-seeked
    before every read, so one ``raw`` must not be shared across threads.
    """

    def __init__(self, raw: IO[bytes], offset: int, length: int) -> None:
        super().__init__()
        if offset < 0 or length < 0:
            raise ValueError("offset and length must be non-negative")
        self._raw = raw
        self._offset = offset
        self._length = length
        self._pos = 0

    def __len__(self) -> int:
        return self._length

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def tell(self) -> int:
        return self._pos

    def seek(self, pos: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_SET:
            target = pos
        elif whence == io.SEEK_CUR:
            target = self._pos + pos
        elif whence == io.SEEK_END:
            target = self._length + pos
        else:
            raise ValueError(f"invalid whence: {whence}")
        if target < 0:
            raise ValueError("negative seek position")
        self._pos = target
        return self._pos

    def readinto(self, buffer) -> int:  # type: ignore[override]
        remaining = self._length - self._pos
        if remaining <= 0:
            return 0
        view = memoryview(buffer)
        want = min(len(view), remaining)
        self._raw.seek(self._offset + self._pos)
        data = self._raw.read(want)
        if not data:
            return 0
        n = len(data)
        view[:n] = data
        self._pos += n
        return n
