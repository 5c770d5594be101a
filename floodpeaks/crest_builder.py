"""
Crest-anchored high water events.

Uses predicted high tide crest times (NOAA hilo, type H) as the tide clock.
For each predicted crest:
- search observed points within the outer window and take the max
- if there are zero observed points within the inner window, skip the crest

The outer window absorbs lag between the observation network and the tide
clock. The inner window stops a crest from being "confirmed" by data that is
actually hours away, e.g. across a sensor outage.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Sequence

from .models import ConfigurationError, CrestMark, Event, Sample, resolve_shared_observations

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CrestWindowConfig:
    outer_window: timedelta = timedelta(hours=2)
    inner_window: timedelta = timedelta(hours=1)

    def validate(self) -> 'CrestWindowConfig':
        if self.inner_window < timedelta(0) or self.outer_window < timedelta(0):
            raise ConfigurationError("Crest windows must be non-negative")
        if self.inner_window > self.outer_window:
            raise ConfigurationError(
                f"inner_window ({self.inner_window}) must not exceed "
                f"outer_window ({self.outer_window})"
            )
        return self


def build_crest_events(
    samples: Sequence[Sample],
    crests: Sequence[CrestMark],
    config: CrestWindowConfig = CrestWindowConfig(),
) -> List[Event]:
    """
    Build one event per confirmed crest.

    Both inputs must be sorted by time. A single left pointer advances over
    the samples as the crests advance, so the sweep is linear in
    len(samples) + len(crests).

    Args:
        samples: Deduplicated observed samples, time-ordered
        crests: Predicted crest marks, time-ordered
        config: Outer/inner window sizes

    Returns:
        Events sorted by observed time. `key` is the crest time, so an event
        keeps its identity when a rerun finds a different maximum.
    """
    config.validate()
    if not samples or not crests:
        return []

    outer = config.outer_window
    inner = config.inner_window

    events: List[Event] = []
    skipped = 0
    left = 0

    for crest in crests:
        c = crest.timestamp

        while left < len(samples) and samples[left].timestamp < c - outer:
            left += 1

        covered = False
        best = None
        i = left
        while i < len(samples):
            t = samples[i].timestamp
            if t > c + outer:
                break
            if abs(t - c) <= inner:
                covered = True
            if best is None or samples[i].value > best.value:
                best = samples[i]
            i += 1

        if not covered or best is None:
            skipped += 1
            logger.info(f"Skipping crest {c.isoformat()}: no observations within {inner}")
            continue

        events.append(Event(observed_time=best.timestamp, value=best.value, key=c))

    if skipped:
        logger.info(f"Skipped {skipped} of {len(crests)} crests for lack of coverage")

    return resolve_shared_observations(events)
