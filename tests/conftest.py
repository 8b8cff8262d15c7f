"""Pytest configuration and fixtures."""

import logging
import sys
from collections.abc import Generator
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for aws_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from aws_mock import MockAwsContext  # noqa: E402

from bucket_policy_sync.config import Config  # noqa: E402


@pytest.fixture
def config() -> Config:
    """Default engine configuration."""
    return Config()


@pytest.fixture
def aws() -> Generator[MockAwsContext, None, None]:
    """Mocked S3 and registry for the duration of a test."""
    with MockAwsContext() as ctx:
        yield ctx


@pytest.fixture
def restore_root_logging() -> Generator[None, None, None]:
    """Remove handlers installed by setup_logging during a test."""
    root_logger = logging.getLogger()
    handlers = list(root_logger.handlers)
    level = root_logger.level
    yield
    for handler in list(root_logger.handlers):
        if handler not in handlers:
            root_logger.removeHandler(handler)
    root_logger.setLevel(level)
