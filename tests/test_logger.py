"""Unit tests for logging setup."""

import logging

from paper_trader.core.logger import setup_logging


def test_setup_logging_file_and_replace(tmp_path):
    package = setup_logging("debug", tmp_path / "logs", "run.log")
    try:
        assert package.level == logging.DEBUG
        assert len(package.handlers) == 2
        logging.getLogger("paper_trader.risk").info("veto trend")
        for handler in package.handlers:
            handler.flush()
        assert "paper_trader.risk | veto trend" in (tmp_path / "logs" / "run.log").read_text(encoding="utf-8")
        assert logging.getLogger("urllib3").level == logging.WARNING

        setup_logging("warning")
        assert len(package.handlers) == 1
        assert package.level == logging.WARNING
    finally:
        for handler in list(package.handlers):
            package.removeHandler(handler)
            handler.close()
        package.setLevel(logging.NOTSET)
