"""
Core data types for the flood peak cache.

Samples and crest marks come out of the provider adapters already normalized
to UTC and to the site's vertical datum. Events are what the detectors emit
and what the cache stores.
"""
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional


class ConfigurationError(ValueError):
    """Invalid site, threshold or window configuration. Fatal before any mutation."""


class UpstreamDataError(RuntimeError):
    """A provider fetch failed or returned a payload we cannot read."""


class Category(str, Enum):
    """
    Flood severity categories, lowest first.

    The string values are what the cache document stores.
    """
    NONE = "None"
    MINOR = "Minor"
    MODERATE = "Moderate"
    MAJOR = "Major"

    @property
    def rank(self) -> int:
        return _CATEGORY_ORDER.index(self)


_CATEGORY_ORDER = [Category.NONE, Category.MINOR, Category.MODERATE, Category.MAJOR]


class SourceTag(str, Enum):
    """Where a series came from: measured by a gauge, or forecast."""
    OBSERVED = "observed"
    FORECAST = "forecast"


@dataclass(frozen=True)
class Sample:
    timestamp: datetime
    value: float


@dataclass(frozen=True)
class CrestMark:
    timestamp: datetime


@dataclass(frozen=True)
class Event:
    """
    A detected peak.

    `key` is the cache identity: the observed time for plain peak detection,
    or the predicted crest time for crest-anchored events.
    """
    observed_time: datetime
    value: float
    key: datetime
    category: Category = Category.NONE
    source: Optional[SourceTag] = None

    def to_dict(self) -> Dict:
        out = {
            'observedTime': format_instant(self.observed_time),
            'value': self.value if math.isfinite(self.value) else None,
            'category': self.category.value,
            'key': format_instant(self.key),
        }
        if self.source is not None:
            out['source'] = self.source.value
        return out

    @classmethod
    def from_dict(cls, data: Dict) -> 'Event':
        observed = parse_instant(data['observedTime'])
        key = parse_instant(data['key']) if data.get('key') else observed
        source = data.get('source')
        try:
            value = float(data.get('value'))
        except (TypeError, ValueError):
            value = math.nan
        return cls(
            observed_time=observed,
            value=value,
            key=key,
            category=Category(data.get('category', Category.NONE.value)),
            source=SourceTag(source) if source else None,
        )


@dataclass(frozen=True)
class Thresholds:
    """Flood stage thresholds in the site's datum. Must be strictly increasing."""
    minor: float
    moderate: float
    major: float

    def validate(self) -> 'Thresholds':
        values = [self.minor, self.moderate, self.major]
        if not all(math.isfinite(v) for v in values):
            raise ConfigurationError(f"Thresholds must be finite numbers: {values}")
        if not (self.minor < self.moderate < self.major):
            raise ConfigurationError(
                f"Thresholds must be strictly increasing (minor < moderate < major), "
                f"got minor={self.minor}, moderate={self.moderate}, major={self.major}"
            )
        return self

    def to_dict(self) -> Dict[str, float]:
        return {'minor': self.minor, 'moderate': self.moderate, 'major': self.major}

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> 'Thresholds':
        if not isinstance(data, dict):
            raise ConfigurationError(
                'Missing thresholds. Add e.g. '
                '"thresholds": {"minor": 3.10, "moderate": 4.10, "major": 5.10}'
            )
        try:
            thresholds = cls(
                minor=float(data['minor']),
                moderate=float(data['moderate']),
                major=float(data['major']),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid thresholds {data!r}: {e}") from e
        return thresholds.validate()


def parse_instant(value: str) -> datetime:
    """Parse an ISO 8601 string into an aware UTC datetime. Naive input is taken as UTC."""
    text = str(value).strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_instant(dt: datetime) -> str:
    """Format as `YYYY-MM-DDTHH:MM:SSZ` (UTC, second precision)."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.replace(microsecond=0, tzinfo=None).isoformat() + 'Z'


def apply_datum_offset(samples: Iterable[Sample], offset: float) -> List[Sample]:
    """Shift sample values into the site datum (canonical = provider value + offset)."""
    if not offset:
        return list(samples)
    return [Sample(s.timestamp, s.value + offset) for s in samples]


def normalize_series(samples: Iterable[Sample]) -> List[Sample]:
    """
    Sort a series by time and drop repeated timestamps.

    Non-finite values are removed. The first sample seen for a timestamp wins
    (the sort is stable, so "first" means first in provider order).
    """
    ordered = sorted(
        (s for s in samples if math.isfinite(s.value)),
        key=lambda s: s.timestamp,
    )
    out: List[Sample] = []
    for sample in ordered:
        if out and out[-1].timestamp == sample.timestamp:
            continue
        out.append(sample)
    return out


def resolve_shared_observations(events: Iterable[Event]) -> List[Event]:
    """
    Sort events by observed time and give each observed sample to one event.

    Crests closer together than twice the outer window can pick the same
    maximum. The event whose key is nearest the sample keeps it (earlier key
    on a tie). Events keyed by their own observed time never collide.
    """
    ordered = sorted(events, key=lambda e: (e.observed_time, e.key))
    out: List[Event] = []
    for event in ordered:
        if out and out[-1].observed_time == event.observed_time:
            current = out[-1]
            if abs(event.key - event.observed_time) < abs(current.key - current.observed_time):
                out[-1] = event
            continue
        out.append(event)
    return out
