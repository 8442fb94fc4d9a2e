import pytest

from messenger.config import get_settings
from messenger.core.logging.builder import setup_logging, stop_queue_logging


@pytest.fixture(autouse=True)
def restore_logging():
    """Tests here reconfigure global logging; put the suite's configuration back afterwards."""
    yield
    stop_queue_logging()
    setup_logging(get_settings())
