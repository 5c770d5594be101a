"""
Per-site peak cache: the JSON document the dashboard reads, and the merge
engine that folds each run's events into it.

Document layout (stable contract for dashboard consumers):

    {
      "site": "01407600",
      "datum": "NAVD88",
      "thresholds": {"minor": 3.1, "moderate": 4.1, "major": 5.1},
      "methodTag": "crest_anchored_highs_v1",
      "lastProcessedTime": "2026-01-01T00:00:00Z",
      "events": [{"observedTime": ..., "value": ..., "category": ..., "key": ...}]
    }

Unknown top-level fields are carried through untouched.
"""
import json
import logging
import math
import os
import tempfile
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional

from .models import (
    ConfigurationError,
    Event,
    SourceTag,
    Thresholds,
    format_instant,
    parse_instant,
    resolve_shared_observations,
)

logger = logging.getLogger(__name__)

_KNOWN_FIELDS = ('site', 'datum', 'thresholds', 'methodTag', 'lastProcessedTime', 'events')


class MergePolicy(str, Enum):
    """
    How to resolve two events that share a key.

    - HIGHER_VALUE: keep the higher value (canonical)
    - OBSERVED_PRECEDENCE: an observed event always displaces a forecast one
      and is never displaced by one; otherwise the higher value wins
    """
    HIGHER_VALUE = "higher_value"
    OBSERVED_PRECEDENCE = "observed_precedence"


@dataclass
class PeakCache:
    site_id: str
    datum_name: str
    thresholds: Thresholds
    method_tag: str = ""
    last_processed: Optional[datetime] = None
    events: List[Event] = field(default_factory=list)
    extra: Dict = field(default_factory=dict)

    def to_dict(self) -> Dict:
        doc = dict(self.extra)
        doc.update({
            'site': self.site_id,
            'datum': self.datum_name,
            'thresholds': self.thresholds.to_dict(),
            'methodTag': self.method_tag,
            'lastProcessedTime': format_instant(self.last_processed) if self.last_processed else None,
            'events': [e.to_dict() for e in self.events],
        })
        return doc

    @classmethod
    def from_dict(cls, doc: Dict) -> 'PeakCache':
        """
        Build a cache from a loaded document.

        Raises:
            ConfigurationError: thresholds missing or invalid, or
                lastProcessedTime not an ISO 8601 instant
        """
        if not isinstance(doc, dict):
            raise ConfigurationError("Cache document must be a JSON object")

        thresholds = Thresholds.from_dict(doc.get('thresholds'))

        last_raw = doc.get('lastProcessedTime')
        last_processed = None
        if last_raw:
            try:
                last_processed = parse_instant(last_raw)
            except ValueError as e:
                raise ConfigurationError(f"Cache lastProcessedTime is invalid ISO: {last_raw!r}") from e

        by_key: Dict[datetime, Event] = {}
        for raw in doc.get('events') or []:
            try:
                event = Event.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Dropping unreadable cached event {raw!r}: {e}")
                continue
            stored = by_key.get(event.key)
            if stored is None or _should_replace(stored, event, MergePolicy.HIGHER_VALUE):
                by_key[event.key] = event
        events = list(by_key.values())

        return cls(
            site_id=str(doc.get('site', '')),
            datum_name=str(doc.get('datum', '')),
            thresholds=thresholds,
            method_tag=str(doc.get('methodTag') or ''),
            last_processed=last_processed,
            events=sort_events(events),
            extra={k: v for k, v in doc.items() if k not in _KNOWN_FIELDS},
        )


@dataclass
class MergeReport:
    added: int = 0
    updated: int = 0
    superseded: int = 0
    reset: bool = False


def sort_events(events: Iterable[Event]) -> List[Event]:
    """Order events by observed time, then key."""
    return sorted(events, key=lambda e: (e.observed_time, e.key))


def load_cache(path: str) -> PeakCache:
    """
    Load a cache document from disk.

    Raises:
        FileNotFoundError: no cache file at `path`
        ConfigurationError: the document is not valid JSON or lacks thresholds
    """
    with open(path, 'r', encoding='utf-8') as f:
        try:
            doc = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Cache file {path} is not valid JSON: {e}") from e
    return PeakCache.from_dict(doc)


def save_cache(cache: PeakCache, path: str) -> None:
    """
    Write the cache in one step.

    The document is written to a temporary file next to `path` and renamed
    over it, so readers see either the old file or the new one.
    """
    cache.events = sort_events(cache.events)
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(prefix='.peaks-', suffix='.json.tmp', dir=directory)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(cache.to_dict(), f, indent=2)
            f.write('\n')
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def _should_replace(stored: Event, incoming: Event, policy: MergePolicy) -> bool:
    if not math.isfinite(stored.value):
        return True
    if policy is MergePolicy.OBSERVED_PRECEDENCE and stored.source != incoming.source:
        if incoming.source is SourceTag.OBSERVED and stored.source is SourceTag.FORECAST:
            return True
        if stored.source is SourceTag.OBSERVED and incoming.source is SourceTag.FORECAST:
            return False
    return incoming.value > stored.value


def merge_events(
    cache: PeakCache,
    new_events: Iterable[Event],
    method_tag: str,
    policy: MergePolicy = MergePolicy.HIGHER_VALUE,
) -> MergeReport:
    """
    Fold a batch of events into the cache in place.

    A method change clears the stored events first (events built by different
    detectors are not comparable); lastProcessedTime is left alone so a
    backfill can repopulate history. Events are matched by `key`; a matching
    stored event is replaced only when `policy` says the new one is better.
    When two stored events end up on the same observed sample (a closer
    crest now claims a maximum an earlier run gave to its neighbour), only the
    event whose key is nearest the sample is kept.
    Applying the same batch twice leaves the cache as after the first.
    """
    report = MergeReport()

    if cache.method_tag != method_tag:
        logger.info(
            f"Method changed ({cache.method_tag or 'none'} -> {method_tag}). "
            f"Clearing {len(cache.events)} events for clean rebuild."
        )
        cache.events = []
        cache.method_tag = method_tag
        report.reset = True

    by_key: Dict[datetime, Event] = {e.key: e for e in cache.events}

    for event in new_events:
        stored = by_key.get(event.key)
        if stored is None:
            by_key[event.key] = event
            report.added += 1
        elif _should_replace(stored, event, policy):
            by_key[event.key] = replace(
                stored,
                observed_time=event.observed_time,
                value=event.value,
                category=event.category,
                source=event.source,
            )
            report.updated += 1

    merged = list(by_key.values())
    cache.events = resolve_shared_observations(merged)
    report.superseded = len(merged) - len(cache.events)
    if report.superseded:
        logger.info(f"Dropped {report.superseded} events whose sample belongs to a nearer crest")
    return report


def advance_last_processed(
    cache: PeakCache,
    coverage_end: Optional[datetime],
    backfill_end: Optional[datetime] = None,
) -> None:
    """
    Update lastProcessedTime after a run.

    Incremental runs move it forward to the latest observation actually
    fetched (never backwards, unchanged when nothing was fetched). A backfill
    sets it to the end of the requested window.
    """
    if backfill_end is not None:
        cache.last_processed = backfill_end
        return
    if coverage_end is None:
        return
    if cache.last_processed is None or coverage_end > cache.last_processed:
        cache.last_processed = coverage_end


def new_cache(site_id: str, datum_name: str, thresholds: Thresholds) -> PeakCache:
    return PeakCache(site_id=site_id, datum_name=datum_name, thresholds=thresholds.validate())
