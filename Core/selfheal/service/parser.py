from __future__ import annotations

from typing import Any

from selenium.webdriver.common.by import By

from selfheal.core.metadata import HealedLocator

_STRATEGY_ALIASES = {
    "css": By.CSS_SELECTOR,
    "css selector": By.CSS_SELECTOR,
    "xpath": By.XPATH,
    "id": By.ID,
    "name": By.NAME,
    "link text": By.LINK_TEXT,
    "partial link text": By.PARTIAL_LINK_TEXT,
    "tag name": By.TAG_NAME,
    "class name": By.CLASS_NAME,
}


def escape_script_string(value: str) -> str:
    """Escapes a value for embedding inside a quoted script literal."""

    return value.replace("\\", "\\\\").replace("'", "\\'").replace('"', '\\"')


def normalize_strategy(selector: str) -> str:
    normalized = selector.strip().lower()
    if normalized in _STRATEGY_ALIASES:
        return _STRATEGY_ALIASES[normalized]
    raise ValueError(f"Unsupported locator strategy: {selector}")


def parse_healed_locator(payload: dict[str, Any] | None) -> HealedLocator | None:
    if not payload:
        return None
    selector = payload.get("selector")
    value = payload.get("value")
    if not isinstance(selector, str) or not isinstance(value, str) or not selector or not value:
        return None
    return HealedLocator(selector=selector, value=value, using=normalize_strategy(selector))


def parse_script(payload: dict[str, Any] | None) -> str | None:
    if not payload:
        return None
    script = payload.get("script")
    if isinstance(script, str) and script.strip():
        return script
    return None
