"""Parsers for the text the runtime CLIs print back."""

from __future__ import annotations

import re
from datetime import datetime, timezone

# Docker and Podman report "never" as the zero time
_ZERO_TIME_PREFIX = "0001-01-01"

_FRACTION_RE = re.compile(r"\.(\d+)")
_SIZE_RE = re.compile(r"^\s*([\d.]+)\s*([a-zA-Z]*)\s*$")

_SIZE_UNITS: dict[str, int] = {
    "": 1,
    "b": 1,
    "kb": 1000,
    "mb": 1000**2,
    "gb": 1000**3,
    "tb": 1000**4,
    "kib": 1024,
    "mib": 1024**2,
    "gib": 1024**3,
    "tib": 1024**4,
}


def parse_timestamp(value: object) -> datetime | None:
    """Parse runtime timestamps: RFC 3339 with nanoseconds, Go's
    "2006-01-02 15:04:05 -0700 MST" layout, or unix seconds."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        if value <= 0:
            return None
        return datetime.fromtimestamp(value, tz=timezone.utc)

    text = str(value).strip()
    if not text or text.startswith(_ZERO_TIME_PREFIX):
        return None
    if text.isdigit():
        return parse_timestamp(int(text))

    # Go layout: drop the trailing zone abbreviation
    parts = text.split(" ")
    if len(parts) >= 3 and re.fullmatch(r"[+-]\d{4}", parts[2]):
        text = f"{parts[0]}T{parts[1]}{parts[2][:3]}:{parts[2][3:]}"

    # fromisoformat only takes microseconds
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_int(value: object) -> int | None:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def parse_size(value: str) -> int:
    """Convert '1.5MiB' style sizes to bytes. Unparseable input counts as zero."""
    match = _SIZE_RE.match(value or "")
    if not match:
        return 0
    number, unit = match.groups()
    multiplier = _SIZE_UNITS.get(unit.lower())
    if multiplier is None:
        return 0
    try:
        return int(float(number) * multiplier)
    except ValueError:
        return 0


def parse_size_pair(value: str) -> tuple[int, int]:
    """Split '1.2MiB / 7.6GiB' into (used, limit) bytes."""
    left, _, right = (value or "").partition("/")
    return parse_size(left), parse_size(right)


def parse_percent(value: str) -> float:
    try:
        return float((value or "").strip().rstrip("%") or 0)
    except ValueError:
        return 0.0


def parse_label_string(value: str) -> dict[str, str]:
    """Docker ps prints labels as "a=1,b=2"."""
    labels: dict[str, str] = {}
    for item in (value or "").split(","):
        key, sep, val = item.partition("=")
        if sep and key.strip():
            labels[key.strip()] = val
    return labels


def tail_lines(text: str, count: int) -> str:
    """Last *count* lines of *text*, for runtimes without a --tail flag."""
    if count <= 0:
        return ""
    lines = text.rstrip("\n").split("\n")
    return "\n".join(lines[-count:])


def last_line(text: str) -> str:
    lines = [line.strip() for line in text.strip().splitlines() if line.strip()]
    return lines[-1] if lines else ""
