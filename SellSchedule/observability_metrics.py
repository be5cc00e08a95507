from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


# ----------------------------
# Reconciler / store
# ----------------------------
reconciler_events_total = Counter(
    "reconciler_events_total",
    "Chat events handled by the reconciler.",
    ["event", "outcome"],
)

schedule_entries = Gauge(
    "schedule_entries",
    "Entries currently tracked in the schedule store.",
)

backfill_messages_total = Counter(
    "backfill_messages_total",
    "Source messages scanned during startup backfill.",
    ["channel", "result"],
)

sell_threads_started_total = Counter(
    "sell_threads_started_total",
    "Threads started on sell posts.",
    ["outcome"],
)

# ----------------------------
# Publisher
# ----------------------------
publish_cycles_total = Counter(
    "publish_cycles_total",
    "Publish cycles per destination by result (published, skipped_unchanged, partial, failed).",
    ["destination", "result"],
)

publish_pages_sent_total = Counter(
    "publish_pages_sent_total",
    "Schedule pages sent to destinations.",
    ["destination"],
)

publish_messages_deleted_total = Counter(
    "publish_messages_deleted_total",
    "Stale bot messages deleted from destinations.",
    ["destination", "outcome"],
)

publish_cycle_latency_seconds = Histogram(
    "publish_cycle_latency_seconds",
    "Latency of one destination publish cycle.",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

personal_views_total = Counter(
    "personal_views_total",
    "Personal schedule view requests by outcome.",
    ["outcome"],
)

# ----------------------------
# Queues
# ----------------------------
task_queue_depth = Gauge(
    "task_queue_depth",
    "Pending tasks per serial queue.",
    ["queue"],
)

task_queue_tasks_total = Counter(
    "task_queue_tasks_total",
    "Tasks executed per serial queue by outcome.",
    ["queue", "outcome"],
)

# ----------------------------
# Collaborators
# ----------------------------
collaborator_calls_total = Counter(
    "collaborator_calls_total",
    "Outbound collaborator calls by classified outcome.",
    ["operation", "outcome"],
)

calendar_requests_total = Counter(
    "calendar_requests_total",
    "Calendar mirror operations by outcome.",
    ["operation", "outcome"],
)

swallowed_exceptions_total = Counter(
    "swallowed_exceptions_total",
    "Exceptions intentionally swallowed (best-effort paths).",
    ["context", "exception_type"],
)


def set_queue_depth(queue: str, depth: int) -> None:
    try:
        task_queue_depth.labels(queue=queue).set(int(depth))
    except Exception:
        pass  # Metrics must never break runtime
