"""
Runtime settings.

Values can be overridden by environment variables or a `.env` file at the
project root.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / '.env'
if env_path.exists():
    load_dotenv(env_path)


def _get_float_env(key: str, default: float) -> float:
    """Get a float value from environment variable or use default."""
    value = os.environ.get(key)
    if value is not None:
        try:
            return float(value)
        except ValueError:
            pass
    return default


def _get_int_env(key: str, default: int) -> int:
    """Get an int value from environment variable or use default."""
    value = os.environ.get(key)
    if value is not None:
        try:
            return int(value)
        except ValueError:
            pass
    return default


# =============================================================================
# Storage
# =============================================================================

# Directory holding the per-site cache documents
# Environment variable: FLOODPEAKS_DATA_DIR
DATA_DIR = os.environ.get('FLOODPEAKS_DATA_DIR', 'data')


# =============================================================================
# Run Settings
# =============================================================================

# Incremental overlap so boundary crests don't get missed (hours)
# Environment variable: FLOODPEAKS_BUFFER_HOURS
BUFFER_HOURS = _get_float_env('FLOODPEAKS_BUFFER_HOURS', 12.0)

# Timeout for upstream requests (in seconds)
# Environment variable: FLOODPEAKS_API_TIMEOUT
API_TIMEOUT_SECONDS = _get_int_env('FLOODPEAKS_API_TIMEOUT', 30)

# Environment variable: FLOODPEAKS_USER_AGENT
USER_AGENT = os.environ.get('FLOODPEAKS_USER_AGENT', 'flood-peaks-cache/1.0')

# Environment variable: FLOODPEAKS_LOG_LEVEL
LOG_LEVEL = os.environ.get('FLOODPEAKS_LOG_LEVEL', 'INFO')
