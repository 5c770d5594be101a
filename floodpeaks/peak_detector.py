"""
Local-maxima peak detection on an observed or forecast water-level series.

Used where no independent tide clock is available: peaks are found directly
in the series, filtered by prominence and declustered by a minimum time
separation.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional, Sequence

import numpy as np

from .models import Event, Sample, SourceTag

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeakDetectorConfig:
    """
    Peak detection settings.

    - min_separation: two accepted peaks are never closer than this
    - min_prominence: height above the neighbourhood minimum required to count
    - neighborhood_radius: samples on each side used for the prominence minimum
      (6 works for 15-60 minute spacing)
    """
    min_separation: timedelta = timedelta(hours=5)
    min_prominence: float = 0.05
    neighborhood_radius: int = 6


def find_peaks(
    samples: Sequence[Sample],
    config: PeakDetectorConfig = PeakDetectorConfig(),
    source: Optional[SourceTag] = None,
) -> List[Event]:
    """
    Find declustered local maxima in a time-ordered, deduplicated series.

    Args:
        samples: Samples sorted by timestamp with unique timestamps
        config: Separation / prominence settings
        source: Source tag attached to every emitted event

    Returns:
        Events ordered by observed time, keyed by observed time
    """
    if len(samples) < 3:
        return []

    values = np.array([s.value for s in samples], dtype=float)

    # Non-endpoint samples at least as high as both neighbours
    is_candidate = (values[1:-1] >= values[:-2]) & (values[1:-1] >= values[2:])
    candidates = [int(i) for i in np.where(is_candidate)[0] + 1]

    radius = max(int(config.neighborhood_radius), 0)
    last_index = len(values) - 1
    peaks: List[Sample] = []

    for idx in candidates:
        lo = max(0, idx - radius)
        hi = min(last_index, idx + radius)
        local_min = float(np.min(values[lo:hi + 1]))
        if values[idx] - local_min < config.min_prominence:
            continue

        sample = samples[idx]
        if peaks and sample.timestamp - peaks[-1].timestamp < config.min_separation:
            # Same cluster: keep only the higher one
            if sample.value > peaks[-1].value:
                peaks[-1] = sample
            continue

        peaks.append(sample)

    logger.debug(f"{len(candidates)} candidates -> {len(peaks)} peaks from {len(samples)} samples")

    return [
        Event(observed_time=p.timestamp, value=p.value, key=p.timestamp, source=source)
        for p in peaks
    ]
