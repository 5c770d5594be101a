"""
One batch run for one site: load the cache, pick the window, fetch, detect,
classify, merge and write the cache back.

Nothing is written unless every step succeeds.
"""
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

from . import config
from .cache import (
    PeakCache,
    advance_last_processed,
    load_cache,
    merge_events,
    new_cache,
    save_cache,
)
from .classifier import classify_events
from .crest_builder import build_crest_events
from .models import (
    ConfigurationError,
    CrestMark,
    Event,
    Sample,
    SourceTag,
    apply_datum_offset,
    normalize_series,
)
from .peak_detector import find_peaks
from .sites import DetectionMode, SiteConfig
from .windows import RunRequest, TimeWindow, compute_window

logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    site_id: str
    cache_path: str
    window: TimeWindow
    samples: int
    crests: int
    new_events: int
    added: int
    updated: int
    reset: bool
    total_events: int
    last_processed: Optional[datetime]


def cache_path_for(site: SiteConfig, data_dir: Optional[str] = None) -> str:
    return os.path.join(data_dir or config.DATA_DIR, site.cache_file)


def load_or_create_cache(site: SiteConfig, path: str) -> PeakCache:
    """
    Load the site's cache, or start an empty one from the site thresholds.

    Raises:
        ConfigurationError: the document lacks valid thresholds, or there is no
            document and the site defines no thresholds either
    """
    if os.path.exists(path):
        cache = load_cache(path)
    else:
        if site.thresholds is None:
            raise ConfigurationError(
                f"Missing cache file {path} and site {site.site_id} defines no thresholds"
            )
        logger.info(f"No cache at {path}; starting a new one")
        cache = new_cache(site.site_id, site.datum_name, site.thresholds)

    cache.site_id = site.site_id
    cache.datum_name = site.datum_name
    return cache


def _source_of(provider) -> SourceTag:
    return getattr(provider, 'source', SourceTag.OBSERVED)


def detect_events(
    site: SiteConfig,
    series: Sequence[Sequence[Sample]],
    sources: Sequence[SourceTag],
    crests: Sequence[CrestMark] = (),
) -> List[Event]:
    """Run the site's detector over normalized series. Categories are not set yet."""
    if site.mode is DetectionMode.CREST:
        observed = normalize_series(
            s for samples, source in zip(series, sources)
            if source is SourceTag.OBSERVED
            for s in samples
        )
        return build_crest_events(observed, crests, site.crest_config)

    events: List[Event] = []
    for samples, source in zip(series, sources):
        events.extend(find_peaks(samples, site.peak_config, source=source))
    return events


def run_site(
    site: SiteConfig,
    request: RunRequest = RunRequest(),
    data_dir: Optional[str] = None,
    now: Optional[datetime] = None,
    observation_providers: Optional[Sequence] = None,
    crest_provider=None,
    buffer: Optional[timedelta] = None,
) -> RunReport:
    """
    Update one site's cache.

    Args:
        site: Site configuration
        request: Incremental run or backfill years
        data_dir: Directory holding cache documents (defaults to config.DATA_DIR)
        now: End of an incremental window and latest lastProcessedTime a
            backfill may record (defaults to the current time)
        observation_providers: Override the site's series providers
        crest_provider: Override the site's crest provider
        buffer: Incremental overlap (defaults to config.BUFFER_HOURS)

    Raises:
        ConfigurationError: invalid thresholds, windows or years
        UpstreamDataError: a provider failed; the cache is not written
    """
    path = cache_path_for(site, data_dir)
    cache = load_or_create_cache(site, path)
    site.crest_config.validate()

    if now is None:
        now = datetime.now(timezone.utc)
    if buffer is None:
        buffer = timedelta(hours=config.BUFFER_HOURS)
    window = compute_window(request, cache.last_processed, now=now, buffer=buffer)
    logger.info(
        f"{site.name}: {window.mode.value} {window.start.isoformat()} -> {window.end.isoformat()}"
    )

    if observation_providers is None:
        observation_providers = site.observation_providers()
    if crest_provider is None and site.crest_provider is not None:
        crest_provider = site.crest_provider()
    if site.mode is DetectionMode.CREST and crest_provider is None:
        raise ConfigurationError(f"Site {site.site_id} uses crest mode but has no crest provider")

    crests: List[CrestMark] = []
    series: List[List[Sample]] = []
    sources: List[SourceTag] = []

    proceed = True
    if site.mode is DetectionMode.CREST:
        crests = crest_provider.fetch(window)
        logger.info(f"Predicted crests: {len(crests)}")
        if not crests:
            logger.info("No predicted crests in window; nothing to build")
            proceed = False

    if proceed:
        for provider in observation_providers:
            raw = provider.fetch(window)
            samples = normalize_series(apply_datum_offset(raw, site.datum_offset))
            logger.info(f"{_source_of(provider).value} samples: {len(samples)}")
            series.append(samples)
            sources.append(_source_of(provider))

    observed_times = [
        samples[-1].timestamp
        for samples, source in zip(series, sources)
        if samples and source is SourceTag.OBSERVED
    ]
    coverage_end = max(observed_times) if observed_times else None
    sample_count = sum(len(s) for s in series)
    if proceed and sample_count == 0:
        logger.info("No observations in window; nothing to detect")

    candidates = detect_events(site, series, sources, crests)
    events = classify_events(candidates, cache.thresholds, site.min_category)
    logger.info(f"New events: {len(events)}")

    report = merge_events(cache, events, site.method_tag, site.merge_policy)
    # A backfill of the current year must not leave lastProcessedTime in the future
    advance_last_processed(
        cache,
        coverage_end,
        backfill_end=min(window.end, now) if window.mode.is_backfill else None,
    )

    save_cache(cache, path)
    logger.info(
        f"Saved {len(cache.events)} total events -> {path} "
        f"(added {report.added}, updated {report.updated})"
    )

    return RunReport(
        site_id=site.site_id,
        cache_path=path,
        window=window,
        samples=sample_count,
        crests=len(crests),
        new_events=len(events),
        added=report.added,
        updated=report.updated,
        reset=report.reset,
        total_events=len(cache.events),
        last_processed=cache.last_processed,
    )
