from __future__ import annotations

import logging
import os

LOG_LEVEL_ENV = "EDGE_PIPELINE_LOG_LEVEL"


def configure_logging(log_file: str = "") -> None:
    log_level = os.environ.get(LOG_LEVEL_ENV, "INFO").upper()
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        handlers=handlers,
        format="%(asctime)s %(levelname)s %(message)s",
    )
