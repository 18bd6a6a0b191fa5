"""Shared fixtures: fake transport, manual clock and client factory"""

import pytest

from visit_tracking import (
    HostEnvironment,
    ManualClock,
    MemoryStorage,
    TrackerConfig,
    TrackingClient,
)

from fakes import FakeTransport

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def environment():
    return HostEnvironment(
        user_agent=CHROME_UA,
        current_url="https://shop.test/",
        referrer="https://www.google.com/search?q=soap",
        page_title="Shop"
    )


@pytest.fixture
def config():
    return TrackerConfig(api_base="http://backend.test/api/v1")


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def make_client(config, transport, storage, environment, clock):
    """Factory so a test can build several clients sharing storage"""
    def factory(**overrides):
        kwargs = {
            "config": config,
            "transport": transport,
            "storage": storage,
            "environment": environment,
            "clock": clock,
        }
        kwargs.update(overrides)
        return TrackingClient(**kwargs)
    return factory


@pytest.fixture
def client(make_client):
    return make_client()
