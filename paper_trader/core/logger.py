"""
Logging for the paper_trader logger tree: stdout always, a file when log_dir and
log_file are both set. Modules log on children (paper_trader.risk, paper_trader.live, ...).
"""

from __future__ import annotations
import logging
import sys
from pathlib import Path
from typing import Iterable, Optional, Union

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
NOISY_LIBRARIES = ("urllib3", "binance")


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[Union[str, Path]] = None,
    log_file: Optional[str] = None,
    quiet: Iterable[str] = NOISY_LIBRARIES,
) -> logging.Logger:
    """
    (Re)configure the package logger. Calling it again replaces the handlers.
    HTTP client libraries are held at WARNING so request lines stay out of the trade log.
    """
    package = logging.getLogger("paper_trader")
    package.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    for handler in list(package.handlers):
        package.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: list = [logging.StreamHandler(sys.stdout)]
    if log_dir and log_file:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path / log_file, encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)
        package.addHandler(handler)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)
    return package
