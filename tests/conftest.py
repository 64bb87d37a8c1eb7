"""Shared fixtures for dqscan tests."""

import pytest

from dqscan.config import DQScanConfig, clear_config_cache, set_config
from dqscan.database.connection import create_tables, dispose_engine


@pytest.fixture
def db_config(tmp_path):
    """Configuration pointing at a fresh SQLite database under tmp_path."""
    config = DQScanConfig(
        config_dir=tmp_path / "config",
        data_dir=tmp_path / "data",
    )
    dispose_engine()
    set_config(config)
    create_tables(config)
    yield config
    dispose_engine()
    clear_config_cache()
