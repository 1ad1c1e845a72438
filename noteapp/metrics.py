"""Prometheus metrics for the note client core.

All metric objects are defined here so they can be imported from any module.
"""

from prometheus_client import Counter, Histogram

# ---------------------------------------------------------------------------
# Note metrics
# ---------------------------------------------------------------------------

NOTE_OPERATIONS = Counter(
    "noteapp_note_operations_total",
    "Total note repository operations",
    ["operation", "status"],  # create/update/delete/list, success/error
)

QUOTA_REJECTIONS = Counter(
    "noteapp_quota_rejections_total",
    "Note creations rejected by the free-tier quota",
)

COUNTER_SYNC_FAILURES = Counter(
    "noteapp_counter_sync_failures_total",
    "Best-effort notes_count writes that failed",
    ["operation"],  # increment, decrement, reconcile
)

# ---------------------------------------------------------------------------
# Profile metrics
# ---------------------------------------------------------------------------

PROFILE_LOOKUPS = Counter(
    "noteapp_profile_lookups_total",
    "Profile lookups by outcome",
    ["result"],  # found, not_found, transient_error
)

PROFILES_CREATED = Counter(
    "noteapp_profiles_created_total",
    "Profiles lazily created for a new identity",
)

# ---------------------------------------------------------------------------
# Subscription metrics
# ---------------------------------------------------------------------------

SUBSCRIPTION_CALLS = Counter(
    "noteapp_subscription_calls_total",
    "Subscription endpoint calls",
    ["operation", "status"],  # begin/complete/cancel, success/error
)

# ---------------------------------------------------------------------------
# Backend request metrics
# ---------------------------------------------------------------------------

BACKEND_DURATION = Histogram(
    "noteapp_backend_request_duration_seconds",
    "Duration of backend requests in seconds",
    ["backend", "operation"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0),
)
