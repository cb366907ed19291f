"""Prometheus metrics definitions for BlobDB.

All BlobDB metrics use the ``blobdb_`` prefix for namespace isolation.
They count queue activity in the current process; counters reset to zero
on restart.

Metrics are opt-in: until ``init_metrics()`` is called the module-level
references stay ``None`` and nothing is registered in the global
prometheus_client registry. The ``record_*`` helpers are no-ops in that
state, so callers never need to check.
"""

from __future__ import annotations

from prometheus_client import Counter

# Flag indicating whether metrics have been initialised via init_metrics().
_initialized: bool = False

# ---------------------------------------------------------------------------
# Queue operation counter  (labels: action, outcome)
# ---------------------------------------------------------------------------
operations_total: Counter | None = None

# ---------------------------------------------------------------------------
# Upload progress
# ---------------------------------------------------------------------------
chunks_total: Counter | None = None
uploads_resumed_total: Counter | None = None

# ---------------------------------------------------------------------------
# Drain loop halts
# ---------------------------------------------------------------------------
queue_halts_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    Safe to call more than once; only the first call registers collectors.
    """
    global _initialized
    global operations_total, chunks_total, uploads_resumed_total, queue_halts_total

    if _initialized:
        return

    operations_total = Counter(
        "blobdb_operations_total",
        "Queued operations processed, by action and outcome",
        ["action", "outcome"],
    )

    chunks_total = Counter(
        "blobdb_chunks_total",
        "Upload chunks acknowledged by the remote service",
    )

    uploads_resumed_total = Counter(
        "blobdb_uploads_resumed_total",
        "Uploads resumed from a persisted resume token",
    )

    queue_halts_total = Counter(
        "blobdb_queue_halts_total",
        "Queue drains halted by an operation error",
    )

    _initialized = True


def record_operation(action: str, outcome: str) -> None:
    if operations_total is not None:
        operations_total.labels(action=action, outcome=outcome).inc()


def record_chunk() -> None:
    if chunks_total is not None:
        chunks_total.inc()


def record_resume() -> None:
    if uploads_resumed_total is not None:
        uploads_resumed_total.inc()


def record_halt() -> None:
    if queue_halts_total is not None:
        queue_halts_total.inc()
