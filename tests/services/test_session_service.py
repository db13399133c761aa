"""Tests for MultipartSessionService."""

from __future__ import annotations

import base64
import hashlib
import io
import threading

import pytest

from s3mpu.common.errors import (
    DuplicatePart,
    IntegrityError,
    InvalidArgument,
    OperationCancelled,
    PartReadError,
    SessionClosed,
    StoreRejected,
    TransportError,
)
from s3mpu.domain.models import CompletedPart, CompletionManifest, UploadSession
from s3mpu.services.assembler import CompletionAssembler
from s3mpu.services.listing_service import ListingService
from s3mpu.services.session_service import MultipartSessionService
from tests.services.mock_storage import MockObjectStore

KIB = 1024


def _content_md5(data: bytes) -> str:
    return base64.b64encode(hashlib.md5(data).digest()).decode()


class OneShotStream:
    """Non-seekable reader over a byte string."""

    def __init__(self, data: bytes, fail_after: int | None = None) -> None:
        self._buffer = io.BytesIO(data)
        self._fail_after = fail_after

    def read(self, size: int = -1) -> bytes:
        if self._fail_after is not None and self._buffer.tell() >= self._fail_after:
            raise OSError("source went away")
        return self._buffer.read(size)


class TestInitiate:
    def test_returns_session(self, sessions, store):
        session = sessions.initiate("b", "big.bin")

        assert session == UploadSession(bucket="b", key="big.bin", upload_id="U1")
        assert session.is_initiated
        assert "U1" in store.uploads

    def test_options_mapping_keeps_known_keys(self, sessions, store):
        sessions.initiate(
            "b",
            "k",
            {"Content-Type": "text/plain", "metadata": {"a": 1}, "bogus": "x"},
        )

        options = store.uploads["U1"]["options"]
        assert options.content_type == "text/plain"
        assert options.metadata == {"a": "1"}

    def test_each_call_creates_new_upload(self, sessions):
        first = sessions.initiate("b", "k")
        second = sessions.initiate("b", "k")

        assert first.upload_id != second.upload_id

    @pytest.mark.parametrize("bucket,key", [("", "k"), ("  ", "k"), ("b", "")])
    def test_rejects_empty_names(self, sessions, store, bucket, key):
        with pytest.raises(InvalidArgument):
            sessions.initiate(bucket, key)

        assert store.calls == []

    def test_cancelled_before_request(self, sessions, store):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(OperationCancelled):
            sessions.initiate("b", "k", cancel=cancel)

        assert store.calls == []


class TestUploadPart:
    @pytest.fixture
    def session(self, sessions):
        return sessions.initiate("b", "k")

    def test_bytes_part(self, sessions, session, store):
        data = b"hello" * 100

        part = sessions.upload_part(session, 1, data)

        assert part.part_number == 1
        assert part.size == len(data)
        assert part.etag == hashlib.md5(data).hexdigest()
        assert part.checksum == _content_md5(data)
        assert part.sha256 == hashlib.sha256(data).hexdigest()
        assert store.uploads["U1"]["parts"][1]["data"] == data

    def test_seekable_stream_restores_position(self, sessions, session, store):
        stream = io.BytesIO(b"headerPAYLOAD")
        stream.seek(6)

        part = sessions.upload_part(session, 2, stream)

        assert part.size == 7
        assert store.uploads["U1"]["parts"][2]["data"] == b"PAYLOAD"
        assert stream.tell() == 6

    def test_seekable_stream_with_size(self, sessions, session, store):
        stream = io.BytesIO(b"0123456789")

        part = sessions.upload_part(session, 1, stream, size=4)

        assert part.size == 4
        assert store.uploads["U1"]["parts"][1]["data"] == b"0123"

    def test_seekable_stream_shorter_than_size(self, sessions, session, store):
        with pytest.raises(InvalidArgument, match="expected 20"):
            sessions.upload_part(session, 1, io.BytesIO(b"short"), size=20)

        assert "upload_part" not in store.calls

    def test_seekable_stream_shorter_than_size_with_checksum(self, sessions, session, store):
        with pytest.raises(InvalidArgument, match="holds 5 bytes, expected 20") as exc_info:
            sessions.upload_part(
                session, 1, io.BytesIO(b"short"), _content_md5(b"short"), size=20
            )

        assert exc_info.value.part_number == 1
        assert "upload_part" not in store.calls

    def test_non_seekable_stream_is_spooled(self, sessions, session, store):
        data = bytes(range(256)) * 1000

        part = sessions.upload_part(session, 3, OneShotStream(data))

        assert part.size == len(data)
        assert store.uploads["U1"]["parts"][3]["data"] == data

    def test_non_seekable_stream_with_size(self, sessions, session, store):
        part = sessions.upload_part(session, 1, OneShotStream(b"abcdefgh"), size=3)

        assert part.size == 3
        assert store.uploads["U1"]["parts"][1]["data"] == b"abc"

    def test_empty_part(self, sessions, session):
        part = sessions.upload_part(session, 1, b"")

        assert part.size == 0
        assert part.etag == hashlib.md5(b"").hexdigest()

    def test_supplied_checksum_is_sent(self, sessions, session):
        data = b"payload"

        part = sessions.upload_part(session, 1, data, checksum=_content_md5(data))

        assert part.checksum == _content_md5(data)
        assert part.sha256 is None

    def test_wrong_checksum_raises_integrity_error(self, sessions, session):
        with pytest.raises(IntegrityError) as exc_info:
            sessions.upload_part(session, 1, b"payload", checksum=_content_md5(b"other"))

        assert exc_info.value.part_number == 1

    def test_malformed_checksum(self, sessions, session, store):
        with pytest.raises(InvalidArgument) as exc_info:
            sessions.upload_part(session, 1, b"x", checksum="nope")

        assert exc_info.value.upload_id == "U1"
        assert "upload_part" not in store.calls

    @pytest.mark.parametrize("number", [0, 10001, -3, True, "1"])
    def test_bad_part_number(self, sessions, session, store, number):
        with pytest.raises(InvalidArgument):
            sessions.upload_part(session, number, b"x")

        assert "upload_part" not in store.calls

    def test_negative_size(self, sessions, session):
        with pytest.raises(InvalidArgument, match="negative"):
            sessions.upload_part(session, 1, b"x", size=-1)

    def test_unsupported_source(self, sessions, session):
        with pytest.raises(InvalidArgument, match="Unsupported"):
            sessions.upload_part(session, 1, 12345)

    def test_read_failure_has_context(self, sessions, session, store):
        with pytest.raises(PartReadError) as exc_info:
            sessions.upload_part(session, 4, OneShotStream(b"a" * 10000, fail_after=4096))

        assert exc_info.value.part_number == 4
        assert exc_info.value.upload_id == "U1"
        assert "upload_part" not in store.calls

    def test_reupload_overwrites(self, sessions, session, store):
        sessions.upload_part(session, 1, b"first")
        second = sessions.upload_part(session, 1, b"second")

        assert store.uploads["U1"]["parts"][1] == {"etag": second.etag, "data": b"second"}

    def test_transport_failure_propagates(self, sessions, session, store):
        store.failures[2] = TransportError("connection refused", status_code=503)

        with pytest.raises(TransportError):
            sessions.upload_part(session, 2, b"data")

        # Session stays usable; the part can be retried.
        part = sessions.upload_part(session, 2, b"data")
        assert part.part_number == 2

    def test_never_initiated_session(self, sessions):
        with pytest.raises(InvalidArgument, match="never initiated"):
            sessions.upload_part(UploadSession("b", "k", ""), 1, b"x")

    def test_cancelled(self, sessions, session, store):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(OperationCancelled) as exc_info:
            sessions.upload_part(session, 1, b"x" * 10, cancel=cancel)

        assert exc_info.value.part_number == 1
        assert "upload_part" not in store.calls


class TestComplete:
    def test_end_to_end_two_parts(self, settings):
        etags = {1: "e1", 2: "e2"}
        store = MockObjectStore(etag_factory=lambda number, _data: etags[number])
        sessions = MultipartSessionService(store=store, settings=settings)

        session = sessions.initiate("b", "big.bin")
        assert session.upload_id == "U1"
        p1 = sessions.upload_part(session, 1, b"\x00" * 64 * KIB)
        p2 = sessions.upload_part(session, 2, b"\xff" * 64 * KIB)
        assert (p1.etag, p2.etag) == ("e1", "e2")

        manifest = CompletionAssembler().build([(2, "e2"), (1, "e1")])
        assert manifest.to_raw_parts() == [(1, "e1"), (2, "e2")]

        identity = sessions.complete(session, manifest)

        assert identity.bucket == "b"
        assert identity.key == "big.bin"
        assert identity.size == 128 * KIB
        assert store.object_data("b", "big.bin") == b"\x00" * 64 * KIB + b"\xff" * 64 * KIB
        assert sessions.state_of(session) == "completed"

    def test_accepts_raw_parts_in_any_order(self, sessions, store):
        session = sessions.initiate("b", "k")
        parts = [sessions.upload_part(session, n, bytes([n]) * 10) for n in (3, 1, 2)]

        identity = sessions.complete(session, parts)

        assert identity.size == 30
        assert store.object_data("b", "k") == b"\x01" * 10 + b"\x02" * 10 + b"\x03" * 10

    def test_completed_object_etag_is_reported(self, sessions, store):
        session = sessions.initiate("b", "k")
        part = sessions.upload_part(session, 1, b"abc")

        identity = sessions.complete(session, [part])

        assert identity.etag == store.objects[("b", "k")]["etag"]
        assert identity.etag.endswith("-1")

    def test_overwritten_part_etag_is_rejected(self, sessions, store):
        session = sessions.initiate("b", "k")
        old = sessions.upload_part(session, 1, b"version one")
        sessions.upload_part(session, 1, b"version two")

        with pytest.raises(StoreRejected) as exc_info:
            sessions.complete(session, [old])

        assert exc_info.value.error_code == "InvalidPart"
        assert not sessions.is_closed(session)

    def test_too_small_part_is_rejected(self, settings):
        store = MockObjectStore(min_part_size=100)
        sessions = MultipartSessionService(store=store, settings=settings)
        session = sessions.initiate("b", "k")
        parts = [
            sessions.upload_part(session, 1, b"a" * 10),
            sessions.upload_part(session, 2, b"b" * 10),
        ]

        with pytest.raises(StoreRejected) as exc_info:
            sessions.complete(session, parts)

        assert exc_info.value.error_code == "EntityTooSmall"

    def test_conflicting_duplicate(self, sessions, store):
        session = sessions.initiate("b", "k")

        with pytest.raises(DuplicatePart) as exc_info:
            sessions.complete(session, [(1, "a"), (1, "b")])

        assert exc_info.value.upload_id == "U1"
        assert exc_info.value.part_number == 1
        assert "complete_multipart_upload" not in store.calls

    def test_empty_manifest(self, sessions, store):
        session = sessions.initiate("b", "k")

        with pytest.raises(InvalidArgument):
            sessions.complete(session, [])

        assert "complete_multipart_upload" not in store.calls

    def test_out_of_order_manifest(self, sessions):
        session = sessions.initiate("b", "k")
        manifest = CompletionManifest(parts=(CompletedPart(2, "b"), CompletedPart(1, "a")))

        with pytest.raises(InvalidArgument, match="ascending"):
            sessions.complete(session, manifest)

    def test_complete_twice_raises_session_closed(self, sessions):
        session = sessions.initiate("b", "k")
        part = sessions.upload_part(session, 1, b"x")
        sessions.complete(session, [part])

        with pytest.raises(SessionClosed):
            sessions.complete(session, [part])
        with pytest.raises(SessionClosed):
            sessions.upload_part(session, 2, b"y")

    def test_head_failure_leaves_size_unknown(self, sessions, store, monkeypatch):
        session = sessions.initiate("b", "k")
        part = sessions.upload_part(session, 1, b"x")

        def failing_head(**_kwargs):
            raise TransportError("head failed", status_code=500)

        monkeypatch.setattr(store, "head_object", failing_head)

        identity = sessions.complete(session, [part])

        assert identity.size is None
        assert sessions.is_closed(session)


class TestAbort:
    def test_abort_then_complete_fails_and_upload_not_listed(self, sessions, store, settings):
        session = sessions.initiate("b", "k")
        listing = ListingService(store=store, settings=settings)

        sessions.abort(session)

        with pytest.raises(SessionClosed):
            sessions.complete(session, [(1, "e1")])
        assert list(listing.iter_uploads("b")) == []

    def test_abort_is_idempotent(self, sessions, store):
        session = sessions.initiate("b", "k")

        sessions.abort(session)
        sessions.abort(session)

        assert store.calls.count("abort_multipart_upload") == 1
        assert sessions.state_of(session) == "aborted"

    def test_abort_of_vanished_upload_succeeds(self, settings, store):
        creator = MultipartSessionService(store=store, settings=settings)
        other = MultipartSessionService(store=store, settings=settings)
        session = creator.initiate("b", "k")
        other.abort(session)

        creator.abort(session)

        assert creator.state_of(session) == "aborted"

    def test_abort_after_complete_is_noop(self, sessions, store):
        session = sessions.initiate("b", "k")
        part = sessions.upload_part(session, 1, b"x")
        sessions.complete(session, [part])

        sessions.abort(session)

        assert "abort_multipart_upload" not in store.calls
        assert sessions.state_of(session) == "completed"

    def test_abort_never_initiated(self, sessions):
        with pytest.raises(InvalidArgument):
            sessions.abort(UploadSession("b", "k", ""))

    def test_abort_other_rejection_propagates(self, sessions, store, monkeypatch):
        session = sessions.initiate("b", "k")

        def denied(**_kwargs):
            raise StoreRejected("Access Denied", error_code="AccessDenied")

        monkeypatch.setattr(store, "abort_multipart_upload", denied)

        with pytest.raises(StoreRejected):
            sessions.abort(session)
        assert not sessions.is_closed(session)


class TestConcurrentParts:
    def test_parallel_uploads_on_one_session(self, sessions, store):
        session = sessions.initiate("b", "k")
        errors: list[BaseException] = []

        def worker(number: int) -> None:
            try:
                sessions.upload_part(session, number, bytes([number]) * 1000)
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(1, 21)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert sorted(store.uploads["U1"]["parts"]) == list(range(1, 21))


class TestClosedSessionTracking:
    def test_oldest_closed_sessions_are_forgotten(self, store, settings):
        sessions = MultipartSessionService(
            store=store, settings=settings, max_closed_sessions=2
        )
        first, second, third = (sessions.initiate("b", f"k{n}") for n in range(3))

        for session in (first, second, third):
            sessions.abort(session)

        assert sessions.state_of(first) is None
        assert sessions.state_of(second) == "aborted"
        assert sessions.state_of(third) == "aborted"

    def test_forgotten_session_is_still_rejected_by_store(self, store, settings):
        sessions = MultipartSessionService(
            store=store, settings=settings, max_closed_sessions=1
        )
        old = sessions.initiate("b", "old")
        sessions.abort(old)
        sessions.abort(sessions.initiate("b", "new"))

        with pytest.raises(StoreRejected) as exc_info:
            sessions.complete(old, [(1, "e1")])

        assert exc_info.value.error_code == "NoSuchUpload"
