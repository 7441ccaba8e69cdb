import logging
import sys

from loguru import logger

from analytics_core.core.loguru_logger import configure_logging


def test_stdlib_loggers_routed_to_loguru(tmp_path):
    log_file = tmp_path / "logs" / "analytics.log"
    configure_logging("DEBUG", log_file)
    messages = []
    logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    try:
        logging.getLogger("sqlalchemy.engine").warning("pool exhausted")
        logging.getLogger("some.library").info("library message")
    finally:
        logger.remove()
        logger.add(sys.stderr)
        logging.captureWarnings(False)

    assert "pool exhausted" in messages
    assert "library message" in messages
    assert log_file.parent.is_dir()
