"""
bpm_portal/config.py
Environment-driven settings shared by both server variants.
Exports: build_port, build_host, build_data_dir, build_db_path, build_data_file_path,
build_settings_file_path, build_index_path, storage_backend, build_ai_timeout, build_log_level
"""

import os
from pathlib import Path

DEFAULT_PORT = 3100
DEFAULT_HOST = "0.0.0.0"
DEFAULT_DATA_DIR = "data"
DB_FILENAME = "portal.sqlite3"
DATA_FILENAME = "portal-data.json"
SETTINGS_FILENAME = "portal-settings.json"
DEFAULT_INDEX_PATH = Path(__file__).parent / "index.html"
STORAGE_SQLITE = "sqlite"
STORAGE_JSON = "json"


def build_port() -> int:
    """Return listen port from PORT, then PORTAL_PORT, then the default."""
    raw_value = (os.getenv("PORT", "").strip() or os.getenv("PORTAL_PORT", "").strip())
    if not raw_value:
        return DEFAULT_PORT
    try:
        port = int(raw_value)
    except ValueError as exc:
        raise RuntimeError(f"Invalid PORT: expected an integer, got {raw_value!r}.") from exc
    if port <= 0:
        raise RuntimeError(f"Invalid PORT: expected a positive integer, got {port}.")
    return port


def build_host() -> str:
    return os.getenv("PORTAL_HOST", DEFAULT_HOST).strip() or DEFAULT_HOST


def build_data_dir() -> Path:
    """Return configured data directory (not created here)."""
    return Path(os.getenv("DATA_DIR", "").strip() or DEFAULT_DATA_DIR)


def build_db_path() -> str:
    """Return SQLite database path inside the data directory."""
    return str(build_data_dir() / DB_FILENAME)


def build_data_file_path() -> Path:
    return build_data_dir() / DATA_FILENAME


def build_settings_file_path() -> Path:
    return build_data_dir() / SETTINGS_FILENAME


def build_index_path() -> Path:
    """Return the HTML page served at `/`."""
    override = os.getenv("PORTAL_INDEX_PATH", "").strip()
    return Path(override) if override else DEFAULT_INDEX_PATH


def storage_backend() -> str:
    """
    Return selected storage variant.

    Returns:
        "sqlite" (default) or "json".
    Raises:
        RuntimeError: When PORTAL_STORAGE holds an unknown value.
    """
    value = os.getenv("PORTAL_STORAGE", STORAGE_SQLITE).strip().lower() or STORAGE_SQLITE
    if value in {"file", "files"}:
        return STORAGE_JSON
    if value not in {STORAGE_SQLITE, STORAGE_JSON}:
        raise RuntimeError(f"Invalid PORTAL_STORAGE: expected 'sqlite' or 'json', got {value!r}.")
    return value


def build_ai_timeout() -> float | None:
    """Return optional outbound AI timeout in seconds; None means wait indefinitely."""
    raw_value = os.getenv("PORTAL_AI_TIMEOUT_SECONDS", "").strip()
    if not raw_value:
        return None
    try:
        seconds = float(raw_value)
    except ValueError as exc:
        raise RuntimeError(
            "Invalid PORTAL_AI_TIMEOUT_SECONDS: expected a positive number."
        ) from exc
    if seconds <= 0:
        raise RuntimeError("Invalid PORTAL_AI_TIMEOUT_SECONDS: expected a positive number.")
    return seconds


def build_log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
