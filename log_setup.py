"""Centralised logging configuration.

Call configure() once at startup (from app.py or catalog_cli.py).
All modules then use logging.getLogger(__name__) normally.

Every line carries the id of the product being worked on, taken from
``product_context()`` (the orchestrator wraps each record's tick in it) or
from ``extra={"product": ...}`` on the call itself; "-" when there is none.

Output:
  console      INFO  level, compact single-line format
  logs/app.log DEBUG level, full format, rotating (5 x 5 MB)
"""

from __future__ import annotations

import logging
import logging.handlers
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Iterator, Optional

LOGS_DIR = Path(__file__).parent / "logs"
LOG_FILE_NAME = "app.log"

_CONSOLE_FMT = "%(asctime)s  %(levelname)-7s  [%(product)s] %(message)s"
_FILE_FMT    = "%(asctime)s  %(levelname)-7s  %(name)-12s  [%(product)s]  %(filename)s:%(lineno)d  %(message)s"
_DATE_FMT    = "%Y-%m-%d %H:%M:%S"

# Provider SDKs and HTTP plumbing log every request at INFO
_NOISY = ("urllib3", "httpx", "httpcore", "werkzeug", "openai", "anthropic", "replicate")

_current_product: ContextVar[str] = ContextVar("current_product", default="-")


@contextmanager
def product_context(product_id: Optional[str]) -> Iterator[None]:
    """Tag every log line emitted inside the block with ``product_id``."""
    token = _current_product.set(product_id or "-")
    try:
        yield
    finally:
        _current_product.reset(token)


class ProductFilter(logging.Filter):
    """Fill ``record.product`` unless the call passed one in ``extra``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "product"):
            record.product = _current_product.get()
        return True


def configure(level: str = "INFO", logs_dir: Optional[Path] = None) -> None:
    """Set up console + rotating file handlers.  Safe to call multiple times."""
    root = logging.getLogger()
    if root.handlers:
        return

    logs_dir = logs_dir or LOGS_DIR
    logs_dir.mkdir(parents=True, exist_ok=True)

    root.setLevel(logging.DEBUG)
    product_filter = ProductFilter()

    console = logging.StreamHandler()
    console.setLevel(getattr(logging, level.upper(), logging.INFO))
    console.setFormatter(logging.Formatter(_CONSOLE_FMT, datefmt=_DATE_FMT))
    console.addFilter(product_filter)
    root.addHandler(console)

    logfile = logging.handlers.RotatingFileHandler(
        logs_dir / LOG_FILE_NAME,
        maxBytes=5 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    logfile.setLevel(logging.DEBUG)
    logfile.setFormatter(logging.Formatter(_FILE_FMT, datefmt=_DATE_FMT))
    logfile.addFilter(product_filter)
    root.addHandler(logfile)

    for noisy in _NOISY:
        logging.getLogger(noisy).setLevel(logging.WARNING)
