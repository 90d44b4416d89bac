"""Run the bridge: ``python -m palpation_bridge``."""
from __future__ import annotations

import logging

import uvicorn

from .config import get_settings
from .logging_config import configure_logging
from .main import create_app

logger = logging.getLogger(__name__)


def run() -> None:
    settings = get_settings()
    configure_logging(
        settings.log_level,
        settings.log_directory,
        settings.log_retention_days,
        device_traffic=settings.log_device_traffic,
    )
    app = create_app(settings)
    logger.info("Listening on http://%s:%d", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    run()
