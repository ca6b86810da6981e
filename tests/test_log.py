import io
import logging

from healthstream.core.config import LoggingConfig
from healthstream.core.log import PACKAGE_LOGGER_NAME, configure_logging, get_logger, temp_level


def test_configure_logging_sets_logger_level():
    logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    original_level = logger.level
    original_handlers = list(logger.handlers)
    logger.setLevel(logging.WARNING)

    try:
        configure_logging(level="DEBUG", stream=io.StringIO())
        assert logger.level == logging.DEBUG
        assert logger.propagate is True
    finally:
        logger.handlers[:] = original_handlers
        logger.setLevel(original_level)


def test_configure_logging_single_stream_handler():
    name = "healthstream.test.single"
    configure_logging(level="INFO", logger_name=name)
    configure_logging(level="INFO", logger_name=name)
    handlers = [h for h in logging.getLogger(name).handlers if isinstance(h, logging.StreamHandler)]
    assert len(handlers) == 1


def test_configure_logging_writes_to_stream():
    name = "healthstream.test.stream"
    buf = io.StringIO()
    configure_logging(level="INFO", stream=buf, fmt="%(levelname)s:%(message)s", logger_name=name)
    get_logger(name).info("session %s started", "process_1_x")
    assert "INFO:session process_1_x started" in buf.getvalue()


def test_temp_level_changes_and_restores():
    logger = logging.getLogger("healthstream.test.temp")
    logger.setLevel(logging.WARNING)
    original_level = logger.level

    with temp_level(logging.DEBUG, name=logger.name):
        assert logger.level == logging.DEBUG

    assert logger.level == original_level


def test_logging_config_apply():
    name = "healthstream.test.cfg"
    LoggingConfig(level="WARNING", propagate=False, logger_name=name).apply()
    logger = logging.getLogger(name)
    assert logger.level == logging.WARNING
    assert logger.propagate is False


def test_package_logger_has_null_handler():
    handlers = logging.getLogger(PACKAGE_LOGGER_NAME).handlers
    assert any(isinstance(h, logging.NullHandler) for h in handlers)
