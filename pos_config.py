"""Runtime configuration for the restaurant POS.

Everything is read from the environment (optionally via a .env file) once at
import time. Modules import the constants they need from here.
"""
import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_string(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return trimmed string-valued env vars, normalizing empty strings to None."""
    raw = os.getenv(name, default)
    if raw is None:
        return default
    if isinstance(raw, str):
        clean = raw.strip()
        return clean if clean else default
    return raw


def _env_float(name: str, default: float) -> float:
    raw = _env_string(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_flag(name: str, default: str = '0') -> bool:
    return (_env_string(name, default) or default).lower() in ('1', 'true', 'yes', 'on')


# Remote JSON document store (Firebase realtime-database REST layout)
REMOTE_URL = _env_string('POS_REMOTE_URL')
REMOTE_PATH = (_env_string('POS_REMOTE_PATH', 'posData') or 'posData').strip('/')
REMOTE_AUTH = _env_string('POS_REMOTE_AUTH')
REMOTE_TIMEOUT = _env_float('POS_REMOTE_TIMEOUT', 4.0)
PARTITION_ORDERS = _env_flag('POS_PARTITION_ORDERS')

# Local cache + bundled defaults
CACHE_DB_PATH = _env_string('POS_CACHE_DB', 'pos_cache.db')
CACHE_KEY = _env_string('POS_CACHE_KEY', 'posData')
DEFAULT_DATA_PATH = _env_string('POS_DEFAULT_DATA', 'data.json')

LOG_LEVEL_NAME = (_env_string('POS_LOG_LEVEL', 'INFO') or 'INFO').upper()

# Background worker
SYNC_MODE = (_env_string('SYNC_MODE', 'refresh') or 'refresh').lower()
SYNC_INTERVAL = _env_float('SYNC_INTERVAL', 60.0)
