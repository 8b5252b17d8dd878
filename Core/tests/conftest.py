from __future__ import annotations

import socket

import pytest

from selfheal.config.schema import HealingOptions, HealingSettings
from selfheal.core.session import AutomationSession

from tests.fake_service import running_service
from tests.helpers import FakeDriver


@pytest.fixture()
def settings():
    return HealingSettings(
        service_url="https://healing.test",
        poll_max_attempts=3,
        poll_timeout_seconds=1,
        poll_interval_seconds=0,
        log_level="DEBUG",
    )


@pytest.fixture()
def heal_options():
    return HealingOptions(self_heal=True)


@pytest.fixture()
def make_session():
    def factory(browser_name: str = "chrome", elements=None, name=None) -> AutomationSession:
        return AutomationSession(FakeDriver(browser_name, elements), name=name)

    return factory


@pytest.fixture()
def fake_service():
    state: dict = {}
    with running_service(state) as base_url:
        state["base_url"] = base_url
        yield state


@pytest.fixture()
def silent_service():
    """Accepts TCP connections but never answers them."""

    listener = socket.create_server(("127.0.0.1", 0), backlog=16)
    try:
        host, port = listener.getsockname()
        yield f"http://{host}:{port}"
    finally:
        listener.close()
