"""Property-based tests for configuration management."""

import os
from dataclasses import FrozenInstanceError
from unittest.mock import patch

import pytest
from hypothesis import given
from hypothesis import strategies as st

from news_digest_bot.config import Config
from news_digest_bot.errors import ConfigError


class TestConfigProperties:
    """Property-based tests for Config class."""

    @given(workers=st.integers(min_value=1, max_value=256))
    def test_concurrency_is_taken_from_environment(self, workers):
        """Any positive SUMMARY_CONCURRENCY becomes the worker bound."""
        with patch.dict(os.environ, {"SUMMARY_CONCURRENCY": str(workers)}, clear=True):
            config = Config()

        assert config.get_orchestrator_config().max_workers == workers

    @given(value=st.text(alphabet=st.characters(whitelist_categories=["Ll", "Lu"]), min_size=1, max_size=10))
    def test_non_integer_concurrency_is_rejected(self, value):
        """Values that are not integers fail loudly instead of falling back."""
        with patch.dict(os.environ, {"SUMMARY_CONCURRENCY": value}, clear=True):
            with pytest.raises(ConfigError):
                Config()

    @given(
        attempts=st.integers(min_value=1, max_value=10),
        base=st.floats(min_value=0, max_value=5, allow_nan=False),
    )
    def test_feed_retry_policy_follows_environment(self, attempts, base):
        env = {"FEED_RETRY_ATTEMPTS": str(attempts), "FEED_RETRY_BASE_DELAY": repr(base)}
        with patch.dict(os.environ, env, clear=True):
            policy = Config().get_feed_config().retry_policy()

        assert policy.max_attempts == attempts
        assert policy.base_delay == base
        assert len(list(policy.delays())) == attempts - 1

    def test_config_sections_are_immutable(self):
        with patch.dict(os.environ, {}, clear=True):
            feed_config = Config().get_feed_config()

        with pytest.raises(FrozenInstanceError):
            feed_config.url = "https://evil.example.com"
