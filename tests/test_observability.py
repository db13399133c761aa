import pytest
from prometheus_client import REGISTRY

from s3mpu.common.errors import TransportError


def _sample(name: str, **labels) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_operation_outcomes_are_counted(sessions, store):
    ok_before = _sample("s3mpu_operations_total", operation="initiate", outcome="ok")
    bytes_before = _sample("s3mpu_part_bytes_total")

    session = sessions.initiate("b", "k")
    sessions.upload_part(session, 1, b"x" * 10)

    assert _sample("s3mpu_operations_total", operation="initiate", outcome="ok") == ok_before + 1
    assert _sample("s3mpu_part_bytes_total") == bytes_before + 10


def test_failures_are_labelled_by_error_type(sessions, store):
    session = sessions.initiate("b", "k")
    store.failures[1] = TransportError("reset")
    before = _sample(
        "s3mpu_operations_total", operation="upload_part", outcome="TransportError"
    )

    with pytest.raises(TransportError):
        sessions.upload_part(session, 1, b"x")

    assert (
        _sample("s3mpu_operations_total", operation="upload_part", outcome="TransportError")
        == before + 1
    )


def test_latency_histogram_observed(sessions):
    before = _sample("s3mpu_operation_duration_seconds_count", operation="initiate")

    sessions.initiate("b", "k")

    assert _sample("s3mpu_operation_duration_seconds_count", operation="initiate") == before + 1
