"""
bpm_portal/server.py
Process entrypoint: logging setup, variant selection, uvicorn.
Exports: configure_logging, select_app, log_startup_banner, run
"""

import logging

import uvicorn
from dotenv import load_dotenv

from bpm_portal.config import (
    STORAGE_JSON,
    build_data_dir,
    build_host,
    build_log_level,
    build_port,
    storage_backend,
)

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=build_log_level(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def select_app() -> str:
    """Return the import string of the app for the configured storage variant."""
    if storage_backend() == STORAGE_JSON:
        return "bpm_portal.file_main:app"
    return "bpm_portal.main:app"


def log_startup_banner(port: int) -> None:
    """Log where the portal listens and what it serves."""
    logger.info("BPM Portal")
    logger.info("Running at  http://localhost:%s", port)
    if storage_backend() == STORAGE_JSON:
        from bpm_portal.file_main import build_store as build_file_store

        store = build_file_store()
        logger.info("Data file   %s", store.data_path)
        logger.info("Settings    %s", store.settings_path)
        return
    from bpm_portal.main import build_store

    store = build_store()
    logger.info("Database    %s", store.db_path)
    logger.info("Tickets     %s", store.count_tickets())


def run() -> None:
    """Start the portal server; stops cleanly on SIGINT/SIGTERM via uvicorn."""
    load_dotenv()
    configure_logging()
    port = build_port()
    build_data_dir().mkdir(parents=True, exist_ok=True)
    log_startup_banner(port)
    uvicorn.run(select_app(), host=build_host(), port=port, log_level=build_log_level().lower())


if __name__ == "__main__":
    run()
