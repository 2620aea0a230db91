"""Shared fixtures for the UserPulse test-suite."""

import pytest

from userpulse.config.settings import Settings
from userpulse.tests.stubs import FakeSummarizer


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        POLL_INTERVAL_SECONDS=0.01,
        POLL_TIMEOUT_SECONDS=5.0,
        SUMMARIZER_TIMEOUT_SECONDS=0.5,
        SOURCE_MAX_RETRIES=0,
        DEFAULT_COMMUNITIES="SaaS,startups,webdev",
        SHUTDOWN_GRACE_SECONDS=0.1,
    )


@pytest.fixture
def fake_summarizer() -> FakeSummarizer:
    return FakeSummarizer()
