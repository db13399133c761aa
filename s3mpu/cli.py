"""Multipart upload debugger.

Usage:
  s3mpu --endpoint http://localhost:9000 multipart new --bucket b --object big.bin
  s3mpu multipart upload --bucket b --object big.bin --uploadid U1 --number 1 --file part1
  s3mpu multipart complete --bucket b --object big.bin --uploadid U1 1.e1 2.e2
  s3mpu multipart listuploads --bucket b --prefix big --delimiter
  s3mpu multipart listparts --bucket b --object big.bin --uploadid U1
  s3mpu multipart abort --bucket b --object big.bin --uploadid U1

Connection flags fall back to the S3_* environment settings.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import sys
from typing import Any, Sequence

from s3mpu.common.config import Settings, get_settings
from s3mpu.common.errors import InvalidArgument, MultipartError
from s3mpu.common.logging import setup_logging
from s3mpu.domain.models import CompletedPart, UploadsMarker, UploadSession
from s3mpu.infra.storage.client import ObjectStoreClient
from s3mpu.services.listing_service import ListingService
from s3mpu.services.session_service import MultipartSessionService


def handle_output(value: Any) -> None:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = dataclasses.asdict(value)
    sys.stdout.write(json.dumps(value, indent=2, default=str))
    sys.stdout.write("\n")


def _settings_from_args(args: argparse.Namespace) -> Settings:
    settings = get_settings()
    overrides: dict[str, Any] = {}
    if args.endpoint:
        endpoint = args.endpoint
        if "://" not in endpoint:
            endpoint = f"{'https' if args.secure else 'http'}://{endpoint}"
        overrides["S3_ENDPOINT_URL"] = endpoint
    if args.access_key:
        overrides["S3_ACCESS_KEY_ID"] = args.access_key
    if args.secret_key:
        overrides["S3_SECRET_ACCESS_KEY"] = args.secret_key
    if args.secure:
        overrides["S3_USE_SSL"] = True
    if args.trace:
        overrides["TRACE_HTTP"] = True
    return dataclasses.replace(settings, **overrides) if overrides else settings


def _parse_completed(raw: str) -> CompletedPart:
    number, sep, etag = raw.partition(".")
    if not sep or not etag:
        raise InvalidArgument(f"Expected PARTNUMBER.ETAG, got {raw!r}")
    try:
        return CompletedPart(part_number=int(number), etag=etag)
    except ValueError as exc:
        raise InvalidArgument(f"Invalid part number in {raw!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="s3mpu", description="Multipart upload debugger")
    parser.add_argument("--endpoint", help="Store endpoint (URL or host:port)")
    parser.add_argument("--access-key", dest="access_key")
    parser.add_argument("--secret-key", dest="secret_key")
    parser.add_argument("--secure", action="store_true", help="Use TLS")
    parser.add_argument("--trace", action="store_true", help="Log HTTP traffic")

    commands = parser.add_subparsers(dest="group", required=True)
    multipart = commands.add_parser("multipart", help="Multipart related operations")
    sub = multipart.add_subparsers(dest="command", required=True)

    new = sub.add_parser("new", help="New multipart upload")
    new.add_argument("--bucket", required=True, help="Bucket name")
    new.add_argument("--object", required=True, help="Object name")

    upload = sub.add_parser("upload", help="Upload part")
    upload.add_argument("--bucket", required=True, help="Bucket name")
    upload.add_argument("--object", required=True, help="Object name")
    upload.add_argument("--uploadid", required=True)
    upload.add_argument("--number", type=int, required=True)
    upload.add_argument("--file", required=True)

    complete = sub.add_parser("complete", help="Complete multipart")
    complete.add_argument("--bucket", required=True)
    complete.add_argument("--object", required=True)
    complete.add_argument("--uploadid", required=True)
    complete.add_argument("parts", nargs="*", metavar="PARTNUMBER.ETAG")

    listuploads = sub.add_parser("listuploads", help="List incomplete uploads")
    listuploads.add_argument("--bucket", required=True)
    listuploads.add_argument("--prefix", default="")
    listuploads.add_argument("--keymarker", default="")
    listuploads.add_argument("--uploadidmarker", default="")
    listuploads.add_argument(
        "--delimiter", action="store_true", help="Group keys on '/'"
    )
    listuploads.add_argument("--maxuploads", type=int, default=0)

    listparts = sub.add_parser("listparts", help="List parts")
    listparts.add_argument("--bucket", required=True)
    listparts.add_argument("--object", required=True)
    listparts.add_argument("--uploadid", required=True)
    listparts.add_argument("--partmarker", type=int, default=0)
    listparts.add_argument("--maxparts", type=int, default=0)

    abort = sub.add_parser("abort", help="Abort multipart upload")
    abort.add_argument("--bucket", required=True)
    abort.add_argument("--object", required=True)
    abort.add_argument("--uploadid", required=True)
    return parser


def run(args: argparse.Namespace, *, store: ObjectStoreClient | None = None) -> int:
    settings = _settings_from_args(args)
    setup_logging(level=settings.LOG_LEVEL, fmt="plain", trace_http=settings.TRACE_HTTP)
    sessions = MultipartSessionService(store=store, settings=settings)
    listing = ListingService(store=sessions.store, settings=settings, sessions=sessions)

    command = args.command
    if command == "new":
        handle_output(sessions.initiate(args.bucket, args.object))
        return 0

    if command == "listuploads":
        page = listing.list_uploads_page(
            args.bucket,
            prefix=args.prefix,
            delimiter="/" if args.delimiter else None,
            marker=UploadsMarker(args.keymarker, args.uploadidmarker),
            max_results=args.maxuploads,
        )
        handle_output(page)
        return 0

    session = UploadSession(bucket=args.bucket, key=args.object, upload_id=args.uploadid)
    if command == "upload":
        with open(args.file, "rb") as fh:
            handle_output(sessions.upload_part(session, args.number, fh))
        return 0
    if command == "complete":
        parts = [_parse_completed(raw) for raw in args.parts]
        handle_output(sessions.complete(session, parts))
        return 0
    if command == "listparts":
        page = listing.list_parts_page(
            session,
            marker=str(args.partmarker) if args.partmarker else None,
            max_results=args.maxparts,
        )
        handle_output(page)
        return 0
    if command == "abort":
        try:
            sessions.abort(session)
        except MultipartError as exc:
            handle_output({"Status": False, "Msg": str(exc)})
            return 1
        handle_output({"Status": True})
        return 0
    raise InvalidArgument(f"Unknown command: {command}")


def main(
    argv: Sequence[str] | None = None, *, store: ObjectStoreClient | None = None
) -> int:
    args = build_parser().parse_args(argv)
    try:
        return run(args, store=store)
    except MultipartError as exc:
        handle_output(exc.to_dict())
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
