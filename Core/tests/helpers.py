from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest
from selenium.common.exceptions import NoSuchElementException, WebDriverException

from selfheal.config.schema import AuthResult
from selfheal.core.browser import BrowserSession
from selfheal.core.metadata import HealedLocator
from selfheal.instrumentation.funnel import EventSink
from selfheal.service.client import HealingServiceClient
from selfheal.service.parser import normalize_strategy


@dataclass
class FakeElement:
    using: str
    value: str


class FakeDriver:
    """Minimal stand-in for a Selenium WebDriver."""

    def __init__(self, browser_name: str = "chrome", elements: set[tuple[str, str]] | None = None) -> None:
        self.session_id = f"session-{browser_name}"
        self.capabilities = {"browserName": browser_name}
        self.elements = set(elements or set())
        self.lookups: list[tuple[str, str]] = []
        self.scripts: list[str] = []
        self.addons: list[tuple[str, bool]] = []

    def find_element(self, using: str, value: str):
        self.lookups.append((using, value))
        if (using, value) in self.elements:
            return FakeElement(using, value)
        raise NoSuchElementException(f"no such element: {using}={value}")

    def execute_script(self, script: str, *args):
        self.scripts.append(script)
        return None

    def install_addon(self, path: str, temporary: bool = False) -> str:
        self.addons.append((path, temporary))
        return "addon@selfheal"

    def quit(self) -> None:
        self.session_id = None


class ScriptedHealingClient(HealingServiceClient):
    """Healing service double that answers from canned values and records calls."""

    def __init__(
        self,
        auth_result: AuthResult | None = None,
        heal_script: str | None = "window.__heal__ = true;",
        log_script: str | None = None,
        poll_results: list[dict[str, str] | None] | None = None,
        failures: dict[str, Exception] | None = None,
    ) -> None:
        self.auth_result = auth_result or AuthResult(is_authenticated=True)
        self.heal_script = heal_script
        self.log_script = log_script
        self.poll_results = list(poll_results or [])
        self.failures = failures or {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.poll_timeouts: list[float | None] = []

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, args))
        if name in self.failures:
            raise self.failures[name]

    def calls_to(self, name: str) -> list[tuple[Any, ...]]:
        return [args for call, args in self.calls if call == name]

    def init(self, key, user, endpoint, client_version):
        self._record("init", key, user, endpoint, client_version)
        return self.auth_result

    def set_token(self, session_id, token, endpoint):
        self._record("set_token", session_id, token, endpoint)

    def log_data(self, locator_type, locator_value, group_id, session_id, region_info):
        self._record("log_data", locator_type, locator_value, group_id, session_id, region_info)
        return self.log_script

    def heal_failure(
        self,
        locator_type,
        locator_value,
        user_id,
        group_id,
        session_id,
        is_group_ai_enabled,
        region_info,
    ):
        self._record(
            "heal_failure",
            locator_type,
            locator_value,
            user_id,
            group_id,
            session_id,
            is_group_ai_enabled,
            region_info,
        )
        return self.heal_script

    def poll_result(self, endpoint, session_id, token, timeout=None):
        self.poll_timeouts.append(timeout)
        self._record("poll_result", endpoint, session_id, token)
        payload = self.poll_results.pop(0) if self.poll_results else None
        if not payload:
            return None
        return HealedLocator(
            selector=payload["selector"],
            value=payload["value"],
            using=normalize_strategy(payload["selector"]),
        )


@dataclass
class RecordingSink(EventSink):
    events: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        self.events.append((event_type, payload))

    @property
    def event_types(self) -> list[str]:
        return [event_type for event_type, _ in self.events]


def healing_auth(**overrides) -> AuthResult:
    values = {
        "is_authenticated": True,
        "status": 200,
        "user_id": "user-1",
        "group_id": "group-1",
        "session_token": "token-1",
        "is_healing_enabled": True,
        "is_group_ai_enabled": False,
        "default_log_data_enabled": False,
    }
    values.update(overrides)
    return AuthResult(**values)


def start_browser_or_skip(capabilities: dict[str, Any], name: str | None = None):
    try:
        return BrowserSession(headless=True).start(capabilities, name=name)
    except WebDriverException as exc:
        pytest.skip(f"{capabilities.get('browserName')} is not available: {exc.msg}")
