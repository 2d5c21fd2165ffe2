import logging
import sys
from pathlib import Path
from typing import Optional

# Third-party loggers that only add noise at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "stripe", "sqlalchemy.engine")


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """
    Configure logging for the delivery service.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path of a log file, e.g. logs/delivery.log
    """

    date_format = "%Y-%m-%d %H:%M:%S"

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt=date_format
    ))
    handlers = [console_handler]

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt=date_format
        ))
        handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger("synergy_delivery")
    logger.info(f"📝 Delivery service logging at {log_level}" + (f", file {log_file}" if log_file else ""))
