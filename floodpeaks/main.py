import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Literal, Optional
from zoneinfo import ZoneInfo

from fastapi import FastAPI, HTTPException, Query, Request
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware
from timezonefinder import TimezoneFinder

logger = logging.getLogger(__name__)

from . import config
from .cache import load_cache
from .models import Category, ConfigurationError, format_instant, parse_instant
from .pipeline import cache_path_for
from .sites import SITES, SiteConfig


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        return response


app = FastAPI(
    title="Flood Peaks API",
    description="Cached flood peak events per gauge site",
    version="1.0.0",
)

# Set up rate limiter
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add security headers middleware
app.add_middleware(SecurityHeadersMiddleware)

# Timezone finder loads its data on first use
_tz_finder = TimezoneFinder()


def get_data_dir() -> str:
    return os.getenv("FLOODPEAKS_DATA_DIR", config.DATA_DIR)


def site_timezone(site: SiteConfig) -> ZoneInfo:
    """Timezone for a site, auto-detected from its coordinates (UTC if unknown)."""
    timezone_str = _tz_finder.timezone_at(lat=site.lat, lng=site.lon)
    if timezone_str is None:
        timezone_str = 'UTC'
    try:
        return ZoneInfo(timezone_str)
    except (ValueError, KeyError):
        return ZoneInfo('UTC')


def _parse_query_instant(value: Optional[str], name: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parse_instant(value)
    except ValueError:
        raise HTTPException(400, f"Invalid {name}. Please use ISO 8601 format (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SSZ)")


def _site_summary(key: str, site: SiteConfig) -> dict:
    return {
        "key": key,
        "site": site.site_id,
        "name": site.name,
        "lat": site.lat,
        "lon": site.lon,
        "datum": site.datum_name,
        "mode": site.mode.value,
        "methodTag": site.method_tag,
    }


@app.get("/health")
async def health():
    return {"status": "healthy", "sites": sorted(SITES)}


@app.get("/api/v1/sites")
async def get_sites():
    """List the registered sites."""
    return [_site_summary(key, site) for key, site in sorted(SITES.items())]


@app.get("/api/v1/peaks/{site_key}")
@limiter.limit("60/minute")
async def get_peaks(
    request: Request,
    site_key: str,
    category: Optional[Literal["none", "minor", "moderate", "major"]] = Query(
        None,
        description="Minimum flood category to include (none, minor, moderate, major)",
    ),
    start: Optional[str] = Query(None, description="Only events observed at or after this instant (ISO 8601)"),
    end: Optional[str] = Query(None, description="Only events observed before this instant (ISO 8601)"),
):
    """
    Get the cached peak events for a site.

    Returns the cache document (site, datum, thresholds, methodTag,
    lastProcessedTime, events). Each event also carries `observedTimeLocal`,
    the observed time in the site's local timezone.

    Rate limited to 60 requests per minute per IP.
    """
    site = SITES.get(site_key)
    if site is None:
        raise HTTPException(404, f"Unknown site '{site_key}'")

    start_dt = _parse_query_instant(start, "start")
    end_dt = _parse_query_instant(end, "end")

    path = cache_path_for(site, get_data_dir())
    try:
        cache = load_cache(path)
    except FileNotFoundError:
        raise HTTPException(404, f"No cached peaks for site '{site_key}' yet")
    except ConfigurationError:
        error_id = uuid.uuid4().hex[:8]
        logger.exception(f"Error {error_id} loading cache for {site_key}")
        raise HTTPException(500, detail=f"Internal error (ref: {error_id})")

    try:
        min_rank = Category(category.capitalize()).rank if category else 0
        tz = site_timezone(site)

        events = []
        for event in cache.events:
            if event.category.rank < min_rank:
                continue
            if start_dt is not None and event.observed_time < start_dt:
                continue
            if end_dt is not None and event.observed_time >= end_dt:
                continue
            row = event.to_dict()
            row["observedTimeLocal"] = event.observed_time.astimezone(tz).replace(microsecond=0).isoformat()
            events.append(row)

        doc = cache.to_dict()
        doc["events"] = events
        doc["timezone"] = str(tz)
        doc["generatedTime"] = format_instant(datetime.now(timezone.utc))
        return doc
    except Exception:
        error_id = uuid.uuid4().hex[:8]
        logger.exception(f"Error {error_id} in get_peaks")
        raise HTTPException(500, detail=f"Internal error (ref: {error_id})")
