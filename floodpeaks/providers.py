"""
Upstream data providers.

Each provider fetches one upstream product and returns canonical, time-ordered
Sample or CrestMark lists in UTC. Values are returned in the provider's own
datum; the pipeline applies the site's datum offset.

- USGS NWIS Instantaneous Values (observed water level)
- NOAA CO-OPS hilo predictions (high tide crest times only)
- NOAA NWPS stageflow (observed or forecast stage)

Any transport failure or unreadable payload raises UpstreamDataError. An empty
result is returned as an empty list.
"""
import json
import logging
import math
import urllib.error
import urllib.parse
import urllib.request
from datetime import datetime, timezone
from typing import Dict, List

from . import config
from .models import CrestMark, Sample, SourceTag, UpstreamDataError, format_instant, parse_instant
from .windows import TimeWindow

logger = logging.getLogger(__name__)

# Maximum response size from external APIs (32 MB; a year of 6-minute IV data is large)
MAX_RESPONSE_SIZE = 32 * 1024 * 1024

USGS_IV_URL = "https://waterservices.usgs.gov/nwis/iv/"
NOAA_DATAGETTER_URL = "https://api.tidesandcurrents.noaa.gov/api/prod/datagetter"
NWPS_GAUGES_URL = "https://api.water.noaa.gov/nwps/v1/gauges"


def safe_read_response(response, max_size: int = MAX_RESPONSE_SIZE) -> bytes:
    """
    Read an HTTP response with a size limit.

    Raises:
        UpstreamDataError: If the response exceeds the size limit
    """
    content_length = response.headers.get('Content-Length')
    if content_length and int(content_length) > max_size:
        raise UpstreamDataError(f"Response too large: {content_length} bytes (max: {max_size})")

    # Read one extra byte to detect overflow
    data = response.read(max_size + 1)
    if len(data) > max_size:
        raise UpstreamDataError(f"Response exceeded size limit of {max_size} bytes")

    return data


def fetch_json(url: str, timeout: float = None) -> Dict:
    """GET a URL and decode its JSON body."""
    if timeout is None:
        timeout = config.API_TIMEOUT_SECONDS
    req = urllib.request.Request(url, headers={'User-Agent': config.USER_AGENT})
    try:
        with urllib.request.urlopen(req, timeout=timeout) as response:
            body = safe_read_response(response)
    except urllib.error.HTTPError as e:
        raise UpstreamDataError(f"Fetch failed {e.code} {e.reason} for {url}") from e
    except (urllib.error.URLError, OSError) as e:
        raise UpstreamDataError(f"Fetch failed for {url}: {e}") from e

    try:
        return json.loads(body.decode('utf-8'))
    except (UnicodeDecodeError, ValueError) as e:
        raise UpstreamDataError(f"Malformed JSON from {url}: {e}") from e


def _to_float(value):
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) else None


def _to_instant(value):
    if not value:
        return None
    try:
        return parse_instant(value)
    except ValueError:
        return None


def _sorted_samples(samples: List[Sample]) -> List[Sample]:
    return sorted(samples, key=lambda s: s.timestamp)


class UsgsIvProvider:
    """USGS NWIS Instantaneous Values for one site and parameter code."""

    source = SourceTag.OBSERVED

    def __init__(self, site: str, parameter_code: str):
        self.site = site
        self.parameter_code = parameter_code

    def build_url(self, window: TimeWindow) -> str:
        params = {
            'format': 'json',
            'sites': self.site,
            'parameterCd': self.parameter_code,
            'startDT': format_instant(window.start),
            'endDT': format_instant(window.end),
            'siteStatus': 'all',
            'agencyCd': 'USGS',
        }
        return f"{USGS_IV_URL}?{urllib.parse.urlencode(params)}"

    def fetch(self, window: TimeWindow) -> List[Sample]:
        url = self.build_url(window)
        logger.info(f"Fetching USGS IV points: {window.start.isoformat()} -> {window.end.isoformat()} (site {self.site})")
        return self.parse(fetch_json(url))

    @staticmethod
    def parse(payload: Dict) -> List[Sample]:
        """Extract samples from `value.timeSeries[0].values[0].value[]`."""
        if not isinstance(payload, dict):
            raise UpstreamDataError("USGS IV payload is not a JSON object")
        try:
            series = payload.get('value', {}).get('timeSeries') or []
            rows = series[0]['values'][0]['value'] if series else []
            no_data = series[0].get('variable', {}).get('noDataValue', -999999.0) if series else None
        except (AttributeError, IndexError, KeyError, TypeError) as e:
            raise UpstreamDataError(f"Unexpected USGS IV payload shape: {e}") from e

        samples = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            ts = _to_instant(row.get('dateTime'))
            value = _to_float(row.get('value'))
            if ts is None or value is None or value == no_data:
                continue
            samples.append(Sample(ts, value))
        return _sorted_samples(samples)


class NoaaHiloCrestProvider:
    """
    NOAA CO-OPS hilo predictions, highs only.

    Used as the tide clock: only the crest times are kept.
    """

    def __init__(self, station: str, datum: str = 'MLLW', application: str = 'flood-peaks'):
        self.station = station
        self.datum = datum
        self.application = application

    def build_url(self, window: TimeWindow) -> str:
        # The product works on whole days; cover every UTC date the window touches
        begin = window.start.astimezone(timezone.utc)
        end = window.end.astimezone(timezone.utc)
        params = {
            'product': 'predictions',
            'application': self.application,
            'begin_date': begin.strftime('%Y%m%d'),
            'end_date': end.strftime('%Y%m%d'),
            'datum': self.datum,
            'station': self.station,
            'time_zone': 'gmt',
            'units': 'english',
            'interval': 'hilo',
            'format': 'json',
        }
        return f"{NOAA_DATAGETTER_URL}?{urllib.parse.urlencode(params)}"

    def fetch(self, window: TimeWindow) -> List[CrestMark]:
        url = self.build_url(window)
        logger.info(f"Fetching NOAA hilo highs for station {self.station}")
        return self.parse(fetch_json(url))

    @staticmethod
    def parse(payload: Dict) -> List[CrestMark]:
        """Keep `predictions[]` rows with type H. Times are GMT `YYYY-MM-DD HH:MM`."""
        if not isinstance(payload, dict):
            raise UpstreamDataError("NOAA hilo payload is not a JSON object")
        if 'error' in payload:
            raise UpstreamDataError(f"NOAA hilo predictions failed: {payload['error']}")

        crests = []
        for entry in payload.get('predictions') or []:
            if not isinstance(entry, dict):
                continue
            if str(entry.get('type', '')).upper() != 'H':
                continue
            time_str = entry.get('t')
            if not time_str:
                continue
            try:
                dt = datetime.strptime(str(time_str), '%Y-%m-%d %H:%M')
            except ValueError:
                continue
            crests.append(CrestMark(dt.replace(tzinfo=timezone.utc)))

        return sorted(crests, key=lambda c: c.timestamp)


class NwpsStageflowProvider:
    """
    NOAA NWPS stageflow series for a gauge.

    The endpoint ignores the requested window and returns its own recent
    span. Observed samples outside the window are dropped; forecast samples
    are kept whole since they lie past the window end by construction.
    """

    def __init__(self, gauge_id: str, source: SourceTag = SourceTag.OBSERVED):
        self.gauge_id = gauge_id
        self.source = source

    def build_url(self) -> str:
        return f"{NWPS_GAUGES_URL}/{self.gauge_id}/stageflow/{self.source.value}"

    def fetch(self, window: TimeWindow) -> List[Sample]:
        url = self.build_url()
        logger.info(f"Fetching NWPS {self.source.value}: {url}")
        samples = self.parse(fetch_json(url))
        if self.source is SourceTag.OBSERVED:
            samples = [s for s in samples if window.contains(s.timestamp)]
        return samples

    @staticmethod
    def parse(payload: Dict) -> List[Sample]:
        """Extract samples from `data[]` rows with `validTime` and `primary`."""
        if not isinstance(payload, dict):
            raise UpstreamDataError("NWPS payload is not a JSON object")
        rows = payload.get('data')
        if rows is None:
            return []
        if not isinstance(rows, list):
            raise UpstreamDataError("NWPS payload `data` is not a list")

        samples = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            ts = _to_instant(row.get('validTime'))
            value = _to_float(row.get('primary'))
            # NWPS marks missing values with -999
            if ts is None or value is None or value <= -999:
                continue
            samples.append(Sample(ts, value))
        return _sorted_samples(samples)

