"""Prometheus exporter helpers."""

from __future__ import annotations

from prometheus_client import Counter


signature_requests_total = Counter(
    "signature_requests_total",
    "Total number of signature formatting requests by outcome.",
    ["outcome"],
)

encode_attempts_total = Counter(
    "signature_encode_attempts_total",
    "Total number of JPEG encode passes by stage.",
    ["stage"],
)

files_deleted_total = Counter(
    "signature_files_deleted_total",
    "Total number of transient files removed.",
)

file_deletion_failures_total = Counter(
    "signature_file_deletion_failures_total",
    "Total number of transient files that could not be removed.",
)
