"""Completion manifest assembly.

Turns the unordered (part number, ETag) pairs collected from individual part
uploads into the ordered manifest the store expects. Pure validation, no I/O.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from s3mpu.common.errors import DuplicatePart, InvalidArgument
from s3mpu.domain.models import (
    MAX_PART_NUMBER,
    MIN_PART_NUMBER,
    CompletedPart,
    CompletionManifest,
    Part,
    PartInfo,
)


def _coerce(raw: Any) -> CompletedPart:
    if isinstance(raw, CompletedPart):
        return raw
    if isinstance(raw, (Part, PartInfo)):
        return CompletedPart(part_number=raw.part_number, etag=raw.etag)
    if isinstance(raw, Mapping):
        number = raw.get("PartNumber", raw.get("part_number"))
        etag = raw.get("ETag", raw.get("etag"))
    else:
        try:
            number, etag = raw
        except (TypeError, ValueError) as exc:
            raise InvalidArgument(
                f"Unrecognised part entry: {raw!r}"
            ) from exc
    if isinstance(number, bool):
        raise InvalidArgument(f"Invalid part number: {number!r}")
    try:
        number = int(number)
    except (TypeError, ValueError) as exc:
        raise InvalidArgument(f"Invalid part number: {number!r}") from exc
    return CompletedPart(part_number=number, etag=str(etag or "").strip().strip('"'))


class CompletionAssembler:
    """Validates and orders the parts declared for completion."""

    def validate(self, manifest: CompletionManifest) -> None:
        """Check a prebuilt manifest is non-empty and strictly ascending."""
        if not manifest.parts:
            raise InvalidArgument("parts list cannot be empty")
        previous = 0
        for part in manifest.parts:
            if part.part_number <= previous:
                raise InvalidArgument(
                    "manifest parts must be strictly ascending by part number",
                    part_number=part.part_number,
                )
            previous = part.part_number

    def build(self, raw_parts: Iterable[Any]) -> CompletionManifest:
        """Build a completion manifest.

        Args:
            raw_parts: ``(part_number, etag)`` pairs, ``CompletedPart``,
                ``Part``, ``PartInfo`` or ``{"PartNumber", "ETag"}`` mappings,
                in any order.

        Returns:
            CompletionManifest sorted ascending by part number.

        Raises:
            InvalidArgument: If the input is empty or an entry is malformed.
            DuplicatePart: If one part number appears with different ETags.
        """
        if isinstance(raw_parts, CompletionManifest):
            raw_parts = raw_parts.parts

        by_number: dict[int, CompletedPart] = {}
        for raw in raw_parts:
            part = _coerce(raw)
            if not MIN_PART_NUMBER <= part.part_number <= MAX_PART_NUMBER:
                raise InvalidArgument(
                    f"part_number must be between {MIN_PART_NUMBER} and {MAX_PART_NUMBER}",
                    part_number=part.part_number,
                )
            if not part.etag:
                raise InvalidArgument(
                    "etag cannot be empty", part_number=part.part_number
                )
            existing = by_number.get(part.part_number)
            if existing is not None and existing.etag != part.etag:
                raise DuplicatePart(
                    f"Conflicting ETags {existing.etag!r} and {part.etag!r}",
                    part_number=part.part_number,
                )
            by_number[part.part_number] = part

        if not by_number:
            raise InvalidArgument("parts list cannot be empty")

        return CompletionManifest(parts=tuple(sorted(by_number.values())))
