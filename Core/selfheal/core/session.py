from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from selenium.common.exceptions import WebDriverException

from selfheal.core.exceptions import SessionClosedError, SetupError
from selfheal.core.metadata import LookupFn, LookupResult

log = logging.getLogger(__name__)

LookupMiddleware = Callable[[LookupFn, str, str], LookupResult]


class AutomationSession:
    """Selenium driver wrapper whose element lookup runs through a middleware chain."""

    def __init__(self, driver, name: str | None = None) -> None:
        self.driver = driver
        self.name = name
        self.command_lock = threading.RLock()
        self._middlewares: list[tuple[str, LookupMiddleware]] = []
        self._closed = False

    @property
    def session_id(self) -> str:
        return self.driver.session_id

    @property
    def capabilities(self) -> dict[str, Any]:
        return self.driver.capabilities or {}

    @property
    def browser_name(self) -> str:
        return str(self.capabilities.get("browserName") or "").lower()

    @property
    def is_active(self) -> bool:
        return not self._closed and self.driver.session_id is not None

    def execute(self, script: str, *args):
        if not self.is_active:
            raise SessionClosedError(f"Session {self.name or ''} is closed")
        return self.driver.execute_script(script, *args)

    def install_addon(self, path: str, temporary: bool = True) -> str:
        install = getattr(self.driver, "install_addon", None)
        if install is None:
            raise SetupError(f"Driver for {self.browser_name or 'unknown browser'} cannot install add-ons")
        return install(path, temporary=temporary)

    def has_lookup_middleware(self, name: str) -> bool:
        return any(existing == name for existing, _ in self._middlewares)

    def register_lookup_middleware(self, name: str, middleware: LookupMiddleware) -> bool:
        if self.has_lookup_middleware(name):
            return False
        self._middlewares.append((name, middleware))
        return True

    def lookup(self, using: str, value: str) -> LookupResult:
        perform: LookupFn = self._driver_lookup
        for _, middleware in self._middlewares:
            perform = _bind(middleware, perform)
        return perform(using, value)

    def find_element(self, using: str, value: str):
        return self.lookup(using, value).unwrap()

    def quit(self) -> None:
        self._closed = True
        self.driver.quit()

    def _driver_lookup(self, using: str, value: str) -> LookupResult:
        if not self.is_active:
            return LookupResult(error=SessionClosedError("Session is closed"))
        try:
            return LookupResult(element=self.driver.find_element(using, value))
        except WebDriverException as exc:
            return LookupResult(error=exc)


def _bind(middleware: LookupMiddleware, perform: LookupFn) -> LookupFn:
    def bound(using: str, value: str) -> LookupResult:
        return middleware(perform, using, value)

    return bound
