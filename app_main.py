"""Application entry point for the exam portal server."""

from __future__ import annotations

import os
from pathlib import Path

from exam_portal.constants.about import APP_NAME, APP_VERSION
from exam_portal.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT, HOST_ENV_VAR, PORT_ENV_VAR
from exam_portal.constants.storage_constants import DATA_DIR_ENV_VAR, DEFAULT_DATA_DIR
from exam_portal.core.portal_context import PortalContext
from exam_portal.core.storage import JsonFileStore
from exam_portal.server.api_server import run_api_server
from exam_portal.utils.logging_config import configure_logging


def _read_port(logger) -> int:
    raw = os.environ.get(PORT_ENV_VAR)
    if not raw:
        return DEFAULT_PORT
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using port %d", PORT_ENV_VAR, raw, DEFAULT_PORT)
        return DEFAULT_PORT


def main() -> None:
    """Initialize logging, restore persisted state and serve the API."""
    logger = configure_logging()
    logger.info("Starting %s %s", APP_NAME, APP_VERSION)

    data_dir = Path(os.environ.get(DATA_DIR_ENV_VAR) or DEFAULT_DATA_DIR)
    host = os.environ.get(HOST_ENV_VAR) or DEFAULT_HOST
    port = _read_port(logger)

    store = JsonFileStore(data_dir)
    context = PortalContext(store=store)
    context.restore()
    logger.info("Data directory: %s", store.data_dir)
    logger.info("Portal available at http://%s:%d/", host, port)

    run_api_server(context, host=host, port=port)


if __name__ == "__main__":
    main()
