"""Central logging setup for the project."""
from __future__ import annotations
import logging
import sys

def setup_logging(level: int = logging.INFO) -> None:
    """
    Configure root logger for the fragment service and CLI.

    The service calls this at import time and the CLI once per run; both log
    retries, upstream failures and promotions through ``moirai.*`` loggers.
    httpx is capped at WARNING so per-request lines do not drown the retry log.

    Args:
        level: Logging level.
    """
    handler = logging.StreamHandler(sys.stdout)
    fmt = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
    handler.setFormatter(logging.Formatter(fmt))
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
