import logging

from pool_notes.api.logging_config import ROOT_LOGGER, get_logger, setup_logging


def _null_handlers():
    return [h for h in logging.getLogger(ROOT_LOGGER).handlers if isinstance(h, logging.NullHandler)]


def test_get_logger_does_not_stack_handlers():
    before = len(_null_handlers())
    for name in ("discovery", "discovery", "database.cache", "indexer"):
        logger = get_logger(name)
        assert logger.name == f"{ROOT_LOGGER}.{name}"
    assert len(_null_handlers()) == before == 1


def test_setup_logging_replaces_its_stream_handler():
    root = logging.getLogger(ROOT_LOGGER)
    saved = (list(root.handlers), root.level)
    try:
        setup_logging("debug")
        setup_logging("warning")
        streams = [h for h in root.handlers if type(h) is logging.StreamHandler]
        assert len(streams) == 1
        assert root.level == logging.WARNING
        assert len(_null_handlers()) == 1
    finally:
        root.handlers[:] = saved[0]
        root.setLevel(saved[1])
