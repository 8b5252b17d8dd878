from __future__ import annotations

import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable

from selfheal.config.schema import AuthResult, HealingOptions, HealingSettings
from selfheal.core.exceptions import SetupError

log = logging.getLogger(__name__)

HEALING_CAPABILITY = "selfheal:options"
EXTENSION_OPTION_KEYS = {
    "chrome": "goog:chromeOptions",
    "microsoftedge": "ms:edgeOptions",
    "edge": "ms:edgeOptions",
}

Injector = Callable[[dict[str, Any]], None]
Eligibility = Callable[[dict[str, Any]], bool]


class CapabilityShape(ABC):
    """One of the three capability layouts a runner can hand over."""

    @abstractmethod
    def augment(self, inject: Injector, is_eligible: Eligibility) -> int:
        """Injects into eligible entries in place and returns how many changed."""

    @abstractmethod
    def unwrap(self):
        raise NotImplementedError


@dataclass(slots=True)
class SingleCapabilities(CapabilityShape):
    capabilities: dict[str, Any]

    def augment(self, inject: Injector, is_eligible: Eligibility) -> int:
        if not is_eligible(self.capabilities):
            return 0
        inject(self.capabilities)
        return 1

    def unwrap(self):
        return self.capabilities


@dataclass(slots=True)
class CapabilityList(CapabilityShape):
    items: list[dict[str, Any]]
    first_only: bool = False

    def augment(self, inject: Injector, is_eligible: Eligibility) -> int:
        targets = self.items[:1] if self.first_only else self.items
        changed = 0
        for capabilities in targets:
            if isinstance(capabilities, dict) and is_eligible(capabilities):
                inject(capabilities)
                changed += 1
        return changed

    def unwrap(self):
        return self.items


@dataclass(slots=True)
class NamedCapabilities(CapabilityShape):
    entries: dict[str, dict[str, Any]]

    def augment(self, inject: Injector, is_eligible: Eligibility) -> int:
        changed = 0
        for entry in self.entries.values():
            capabilities = entry.get("capabilities")
            if isinstance(capabilities, dict) and is_eligible(entry):
                inject(capabilities)
                changed += 1
        return changed

    def unwrap(self):
        return self.entries


def is_named_capabilities(raw: Any) -> bool:
    return (
        isinstance(raw, dict)
        and bool(raw)
        and all(isinstance(entry, dict) and isinstance(entry.get("capabilities"), dict) for entry in raw.values())
    )


def wrap_capabilities(raw: Any, first_only: bool = False) -> CapabilityShape:
    if isinstance(raw, list):
        return CapabilityList(raw, first_only=first_only)
    if is_named_capabilities(raw):
        return NamedCapabilities(raw)
    if isinstance(raw, dict):
        return SingleCapabilities(raw)
    raise TypeError(f"Unsupported capability shape: {type(raw).__name__}")


def _encoded_extension(path: str) -> str:
    extension_path = Path(path)
    if not extension_path.is_file():
        raise SetupError(f"Companion extension not found at {extension_path}")
    return _encode_file(str(extension_path), extension_path.stat().st_mtime_ns)


@lru_cache(maxsize=8)
def _encode_file(path: str, mtime_ns: int) -> str:
    return base64.b64encode(Path(path).read_bytes()).decode("ascii")


class CapabilityAugmenter:
    """Decides whether healing support is injected into capability descriptors."""

    def __init__(self, settings: HealingSettings) -> None:
        self.settings = settings

    def augment(self, auth_result: AuthResult, options: HealingOptions, capabilities):
        if auth_result.is_authenticated and (auth_result.default_log_data_enabled or options.self_heal):
            shape = wrap_capabilities(capabilities, first_only=self.settings.augment_first_list_entry_only)
            changed = shape.augment(self.inject, self.is_eligible)
            log.debug("Injected healing support into %d capability set(s)", changed)
            return shape.unwrap()
        if options.self_heal:
            log.warning(
                "Healing Auth failed. Disabling healing for this session. Reason: %s",
                auth_result.message,
            )
        return capabilities

    def is_eligible(self, entry: dict[str, Any]) -> bool:
        capabilities = entry.get("capabilities", entry)
        if not self.settings.is_supported_browser(capabilities.get("browserName")):
            return False
        return not self.settings.is_provider_entry(entry)

    def inject(self, capabilities: dict[str, Any]) -> None:
        capabilities[HEALING_CAPABILITY] = {
            "enabled": True,
            "clientVersion": self.settings.client_version,
            "region": self.settings.region,
        }
        browser_name = str(capabilities.get("browserName", "")).lower()
        option_key = EXTENSION_OPTION_KEYS.get(browser_name)
        if option_key and self.settings.chrome_extension_path:
            encoded = _encoded_extension(self.settings.chrome_extension_path)
            vendor_options = capabilities.setdefault(option_key, {})
            extensions = vendor_options.setdefault("extensions", [])
            if encoded not in extensions:
                extensions.append(encoded)
