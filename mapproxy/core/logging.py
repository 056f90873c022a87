"""Logging configuration utilities for the mapping proxy."""
import logging
import os

SERVICE_NAME = "mapproxy"


def setup_logging() -> None:
    """Configure root logging based on the LOG_LEVEL environment variable."""
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def get_logger(area: str) -> logging.Logger:
    """Return the logger for one area of the service, e.g. ``mapproxy.proxy``."""
    return logging.getLogger(f"{SERVICE_NAME}.{area}")
