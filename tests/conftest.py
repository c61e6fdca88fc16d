"""
Pytest configuration for roster tests.

Async tests are marked explicitly with @pytest.mark.asyncio.
"""

import pytest

from roster.logging.config import LoggingConfig


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


@pytest.fixture(autouse=True)
def reset_logging_config():
    yield
    LoggingConfig().update(log_level="info", log_output="stdout", disabled_loggers=[])
