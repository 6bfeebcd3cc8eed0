"""Shared pytest fixtures."""

import pytest

from docctx.logger import get_logger


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop handlers bound to streams that pytest or CliRunner closed."""
    yield
    logger = get_logger()
    for handler in logger.handlers:
        handler.close()
    logger.handlers = []
