from __future__ import annotations

import logging
import os
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

log = logging.getLogger(__name__)

AUTH_RESULT_ENV = "SELFHEAL_AUTH_RESULT"
PROVIDER_KEY_LENGTH = 20


class AuthResult(BaseModel):
    """Outcome of authenticating against the remote healing service."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    is_authenticated: bool = False
    status: int | None = None
    message: str | None = None
    user_id: str | None = None
    group_id: str | None = None
    session_token: str | None = None
    is_healing_enabled: bool | None = None
    is_group_ai_enabled: bool | None = Field(default=None, alias="isGroupAIEnabled")
    default_log_data_enabled: bool | None = None

    def to_env_value(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_env_value(cls, raw: str | None) -> AuthResult | None:
        if not raw or not raw.strip() or raw.strip() == "{}":
            return None
        try:
            return cls.model_validate_json(raw)
        except ValidationError as exc:
            log.debug("Ignoring unreadable %s value: %s", AUTH_RESULT_ENV, exc)
            return None


class HealingOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    self_heal: bool = False
    user: str | None = None
    key: str | None = None


class LaunchConfig(BaseModel):
    """Connection settings of the surrounding test runner."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    hostname: str | None = None
    user: str | None = None
    key: str | None = None


class RunConfig(BaseModel):
    """Identity attached to instrumentation events."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    user_name: str | None = None
    access_key: str | None = None
    framework: str | None = None
    build_name: str | None = None


class HealingSettings(BaseModel):
    service_url: str
    region: str = "us-east-1"
    client_version: str = "0.1.0"
    events_url: str | None = None
    request_timeout_seconds: float = 30
    poll_max_attempts: int = 20
    poll_timeout_seconds: float = 10
    poll_interval_seconds: float = 0.5
    supported_browsers: list[str] = Field(
        default_factory=lambda: ["chrome", "firefox", "microsoftedge", "edge"]
    )
    provider_domains: list[str] = Field(default_factory=list)
    firefox_addon_path: str | None = None
    chrome_extension_path: str | None = None
    augment_first_list_entry_only: bool = False
    log_level: str = "INFO"
    audit_dir: str | None = None

    @field_validator("service_url")
    @classmethod
    def validate_service_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError("service_url must be an absolute http(s) URL")
        return value.rstrip("/")

    @field_validator("supported_browsers", "provider_domains")
    @classmethod
    def normalize_names(cls, value: list[str]) -> list[str]:
        return [item.strip().lower() for item in value if item.strip()]

    @field_validator("poll_max_attempts")
    @classmethod
    def validate_poll_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("poll_max_attempts must be at least 1")
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        normalized = value.upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unsupported log level: {value}")
        return normalized

    @property
    def service_host(self) -> str:
        return urlparse(self.service_url).netloc

    def is_supported_browser(self, browser_name: str | None) -> bool:
        return bool(browser_name) and browser_name.lower() in self.supported_browsers

    def is_provider_host(self, hostname: str | None) -> bool:
        if not hostname:
            return False
        host = hostname.lower()
        domains = self.provider_domains or [self.service_host.split(":")[0].lower()]
        return any(host == domain or host.endswith("." + domain) for domain in domains)

    def is_provider_entry(self, entry: dict) -> bool:
        """An entry without a hostname runs on the provider grid when it carries provider credentials."""

        hostname = entry.get("hostname")
        if hostname:
            return self.is_provider_host(hostname)
        user, key = entry.get("user"), entry.get("key")
        return isinstance(user, str) and isinstance(key, str) and len(key) == PROVIDER_KEY_LENGTH

    @classmethod
    def from_env(cls, environ=None) -> HealingSettings:
        env = os.environ if environ is None else environ
        service_url = env.get("SELFHEAL_SERVICE_URL")
        if not service_url:
            raise RuntimeError("SELFHEAL_SERVICE_URL is required to enable self-healing")
        payload: dict[str, object] = {"service_url": service_url}
        optional = {
            "SELFHEAL_REGION": "region",
            "SELFHEAL_EVENTS_URL": "events_url",
            "SELFHEAL_POLL_MAX_ATTEMPTS": "poll_max_attempts",
            "SELFHEAL_POLL_TIMEOUT": "poll_timeout_seconds",
            "SELFHEAL_POLL_INTERVAL": "poll_interval_seconds",
            "SELFHEAL_FIREFOX_ADDON": "firefox_addon_path",
            "SELFHEAL_CHROME_EXTENSION": "chrome_extension_path",
            "SELFHEAL_LOG_LEVEL": "log_level",
            "SELFHEAL_AUDIT_DIR": "audit_dir",
        }
        for env_name, field_name in optional.items():
            if env.get(env_name):
                payload[field_name] = env[env_name]
        if env.get("SELFHEAL_PROVIDER_DOMAINS"):
            payload["provider_domains"] = env["SELFHEAL_PROVIDER_DOMAINS"].split(",")
        return cls.model_validate(payload)
