"""The managed label set: the only way we recognise containers we own."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Mapping

MANAGED_LABEL = "sandkit.managed"
RUN_ID_LABEL = "sandkit.run.id"
CREATED_LABEL = "sandkit.created"

MANAGED_FILTER: dict[str, str] = {MANAGED_LABEL: "true"}


def _timestamp(now: datetime | None) -> str:
    return (now or datetime.now(timezone.utc)).isoformat()


def managed_labels(run_id: str, created_at: datetime | None = None) -> dict[str, str]:
    """Fixed label set for a container created on behalf of *run_id*."""
    return {
        MANAGED_LABEL: "true",
        RUN_ID_LABEL: run_id,
        CREATED_LABEL: _timestamp(created_at),
    }


def with_managed_labels(
    labels: Mapping[str, str],
    fallback_run_id: str,
    now: datetime | None = None,
) -> dict[str, str]:
    """Merge the managed label set into caller labels.

    Caller-supplied run id and creation time win; the managed flag is always
    forced to "true".
    """
    merged = dict(labels)
    merged[MANAGED_LABEL] = "true"
    merged.setdefault(RUN_ID_LABEL, fallback_run_id)
    merged.setdefault(CREATED_LABEL, _timestamp(now))
    return merged


def is_managed(labels: Mapping[str, str] | None) -> bool:
    return labels is not None and labels.get(MANAGED_LABEL) == "true"


def matches(labels: Mapping[str, str] | None, wanted: Mapping[str, str] | None) -> bool:
    """True when every key/value in *wanted* is present in *labels*."""
    if not wanted:
        return True
    have = labels or {}
    return all(have.get(key) == value for key, value in wanted.items())


def listing_filter(extra: Mapping[str, str] | None = None) -> dict[str, str]:
    """Caller filters with the managed filter appended last."""
    combined = {k: v for k, v in (extra or {}).items() if k != MANAGED_LABEL}
    combined.update(MANAGED_FILTER)
    return combined
