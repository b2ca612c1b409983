"""
Normalized item schema shared by every provider.

Adapters turn provider-native records into ``NormalizedItem`` values; the
aggregator only ever looks at ``timestamp`` and passes ``payload`` through to
the template untouched.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from dateutil.parser import parse as parse_date


@dataclass(frozen=True)
class NormalizedItem:
    """
    One activity item from one configured source.

    Items carry no identity key: the same event fetched twice
    produces two items. Fields are read-only once the adapter has built
    the item.
    """
    timestamp: datetime
    source_id: str
    kind: Optional[str] = None
    payload: dict = field(default_factory=dict)

    def __post_init__(self):
        if self.timestamp.tzinfo is None:
            raise ValueError("NormalizedItem.timestamp must be timezone-aware")

    def __str__(self) -> str:
        kind = f"/{self.kind}" if self.kind else ""
        return f"[{self.source_id}{kind}] {self.timestamp.isoformat()}"

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "source_id": self.source_id,
            "kind": self.kind,
            "payload": self.payload,
        }


# Shorter digit runs such as "20110504" are compact dates.
_EPOCH_SECONDS = re.compile(r"-?\d{9,}(\.\d+)?")


def parse_timestamp(value: Any) -> datetime:
    """
    Resolve a provider date representation to an aware UTC datetime.

    Accepts datetimes (naive ones are taken as UTC), epoch seconds as int,
    float or a numeric string of at least nine digits, and any date string
    dateutil understands (RFC 2822 from Twitter, ISO 8601 from Delicious,
    Tumblr's ``2011-05-04 10:00:00 GMT``, compact ``20110504``).

    Raises:
        ValueError: if the value cannot be resolved
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, bool) or value is None:
        raise ValueError(f"Not a timestamp: {value!r}")

    if isinstance(value, (int, float)):
        return _from_epoch(value)

    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("Empty timestamp string")
        if _EPOCH_SECONDS.fullmatch(text):
            return _from_epoch(float(text))
        try:
            dt = parse_date(text)
        except (ValueError, OverflowError) as e:
            raise ValueError(f"Unparseable timestamp {value!r}: {e}") from e
        return parse_timestamp(dt)

    raise ValueError(f"Unsupported timestamp type: {type(value).__name__}")


def _from_epoch(seconds: float) -> datetime:
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError) as e:
        raise ValueError(f"Epoch out of range: {seconds!r}") from e


_NON_IDENTIFIER = re.compile(r"\W+")


def normalize_key(key: Any) -> str:
    """Rewrite a field name into a valid template identifier."""
    name = _NON_IDENTIFIER.sub("_", str(key))
    if not name:
        return "_"
    if name[0].isdigit():
        name = "_" + name
    return name


def normalize_payload_keys(data: Any) -> Any:
    """
    Recursively rewrite mapping keys into template-safe identifiers.

    ``{"photo-url-250": ...}`` becomes ``{"photo_url_250": ...}``. Lists are
    walked; scalar values are returned unchanged.
    """
    if isinstance(data, dict):
        return {normalize_key(k): normalize_payload_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [normalize_payload_keys(v) for v in data]
    return data


_UNITS = [
    (365 * 24 * 3600, "year"),
    (30 * 24 * 3600, "month"),
    (24 * 3600, "day"),
    (3600, "hour"),
    (60, "minute"),
]


def relative_time(moment: datetime, now: Optional[datetime] = None) -> str:
    """
    Describe how long ago ``moment`` was, e.g. ``"3 hours ago"``.

    Anything under a minute old, or in the future, is ``"just now"``.
    """
    now = now or datetime.now(timezone.utc)
    seconds = (parse_timestamp(now) - parse_timestamp(moment)).total_seconds()

    if seconds < 60:
        return "just now"

    for size, unit in _UNITS:
        if seconds >= size:
            count = int(seconds // size)
            plural = "" if count == 1 else "s"
            return f"{count} {unit}{plural} ago"

    return "just now"
