from __future__ import annotations

import logging
import os

import uvicorn

from roam.config_manager import ConfigManager
from roam.models import LoggingConfig


def configure_logging(config: LoggingConfig) -> None:
    logging.basicConfig(level=getattr(logging, config.level, logging.INFO), format=config.format, force=True)


def main() -> None:
    host = os.getenv("ROAM_HOST", "127.0.0.1")
    port = int(os.getenv("ROAM_PORT", "8080"))
    config = ConfigManager(os.getenv("ROAM_CONFIG_PATH", "config.yaml")).load()
    configure_logging(config.logging)
    uvicorn.run("roam.web_admin:app", host=host, port=port, reload=False, log_config=None)


if __name__ == "__main__":
    main()
