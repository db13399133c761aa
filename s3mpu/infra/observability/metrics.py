from prometheus_client import Counter, Histogram

# Low-cardinality labels only: never label by bucket, key or upload id
OPERATIONS = Counter(
    "s3mpu_operations_total",
    "Multipart protocol operations by outcome",
    ["operation", "outcome"],
)

LATENCY = Histogram(
    "s3mpu_operation_duration_seconds",
    "Multipart protocol operation latency in seconds",
    ["operation"],
)

PART_BYTES = Counter(
    "s3mpu_part_bytes_total",
    "Bytes acknowledged by the store across uploaded parts",
)
