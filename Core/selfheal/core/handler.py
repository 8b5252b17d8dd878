from __future__ import annotations

import logging
import os
from typing import Any, Mapping, MutableMapping

from selfheal.config.loader import resolve_credentials
from selfheal.config.schema import (
    AUTH_RESULT_ENV,
    AuthResult,
    HealingOptions,
    HealingSettings,
    LaunchConfig,
    RunConfig,
)
from selfheal.core.auth import AuthGate
from selfheal.core.binder import SessionBinder
from selfheal.core.capabilities import CapabilityAugmenter
from selfheal.core.interceptor import CommandInterceptor
from selfheal.core.multiremote import MultiRemoteCoordinator
from selfheal.core.protocol import HealingProtocol
from selfheal.core.session import AutomationSession
from selfheal.instrumentation.funnel import HealingInstrumentation, HttpEventSink
from selfheal.logging.audit import HealingAuditLogger
from selfheal.service.client import HealingServiceClient

log = logging.getLogger(__name__)


def _apply_log_level(settings: HealingSettings) -> None:
    logging.getLogger("selfheal").setLevel(settings.log_level)


class LaunchHandler:
    """Launcher-side entry point: authenticate once and augment capabilities."""

    def __init__(
        self,
        client: HealingServiceClient,
        settings: HealingSettings,
        instrumentation: HealingInstrumentation | None = None,
        environ: MutableMapping[str, str] | None = None,
    ) -> None:
        self.settings = settings
        self.environ = os.environ if environ is None else environ
        self.auth_gate = AuthGate(client, settings)
        self.augmenter = CapabilityAugmenter(settings)
        self.instrumentation = instrumentation or HealingInstrumentation(
            HttpEventSink(settings.events_url) if settings.events_url else None
        )
        self.coordinator = MultiRemoteCoordinator(self.augmenter, self.instrumentation, self.environ)
        self.auth_result: AuthResult | None = None
        _apply_log_level(settings)

    def setup(
        self,
        config: LaunchConfig,
        run_config: RunConfig,
        options: HealingOptions,
        capabilities: Any,
        is_multiremote: bool,
    ):
        try:
            credentials = resolve_credentials(config, options, self.environ)
            if credentials is None:
                log.debug("No healing credentials configured, skipping setup")
                return capabilities
            user, key = credentials
            self.auth_result = self.auth_gate.authenticate(user, key)
            self.environ[AUTH_RESULT_ENV] = self.auth_result.to_env_value()
            if is_multiremote:
                return self.coordinator.augment_all(self.auth_result, config, run_config, options, capabilities)
            return self._setup_capabilities(run_config, options, capabilities)
        except Exception as exc:  # noqa: BLE001 - setup failures leave capabilities untouched.
            if options.self_heal:
                log.warning("Error while initializing healing extension: %s", exc)
            else:
                log.debug("Error while initializing healing extension: %s", exc)
        return capabilities

    def _setup_capabilities(self, run_config: RunConfig, options: HealingOptions, capabilities: Any):
        if isinstance(capabilities, dict) and not self.augmenter.is_eligible(capabilities):
            return capabilities
        self.instrumentation.handle(self.auth_result, run_config, options.self_heal)
        return self.augmenter.augment(self.auth_result, options, capabilities)


class SessionHandler:
    """Worker-side entry point: bind sessions and install the healing lookup."""

    def __init__(
        self,
        auth_result: AuthResult | None,
        client: HealingServiceClient,
        settings: HealingSettings,
    ) -> None:
        self.auth_result = auth_result
        self.settings = settings
        self.binder = SessionBinder(client, settings)
        self.coordinator = MultiRemoteCoordinator(CapabilityAugmenter(settings), HealingInstrumentation())
        audit_logger = HealingAuditLogger(settings.audit_dir) if settings.audit_dir else None
        self.interceptor = (
            CommandInterceptor(HealingProtocol(client, auth_result, settings, audit_logger))
            if auth_result is not None
            else None
        )
        _apply_log_level(settings)

    @classmethod
    def from_environ(
        cls,
        client: HealingServiceClient,
        settings: HealingSettings,
        environ: Mapping[str, str] | None = None,
    ) -> SessionHandler:
        env = os.environ if environ is None else environ
        return cls(AuthResult.from_env_value(env.get(AUTH_RESULT_ENV)), client, settings)

    def self_heal(
        self,
        options: HealingOptions,
        capabilities: Any,
        session_or_sessions: AutomationSession | Mapping[str, AutomationSession],
    ) -> None:
        try:
            if isinstance(session_or_sessions, Mapping):
                names = [name for name in session_or_sessions if not capabilities or name in capabilities]
                named_sessions = {name: session_or_sessions[name] for name in names}
                self.coordinator.setup_all(named_sessions, lambda session: self.setup_session(options, session), options)
            else:
                self.setup_session(options, session_or_sessions)
        except Exception as exc:  # noqa: BLE001 - the session proceeds without healing.
            if options.self_heal:
                log.warning("Error while setting up self-healing: %s. Disabling healing for this session.", exc)
            else:
                log.debug("Error while setting up self-healing: %s", exc)

    def setup_session(self, options: HealingOptions, session: AutomationSession) -> bool:
        if not self.settings.is_supported_browser(session.browser_name):
            return False
        if self.auth_result is None or self.interceptor is None:
            if options.self_heal:
                log.debug("Healing auth result is empty")
            return False
        if not (
            self.auth_result.is_authenticated
            and (self.auth_result.default_log_data_enabled or options.self_heal)
        ):
            return False
        self.binder.bind(session.session_id, self.auth_result.session_token)
        if self.binder.needs_companion_extension(session):
            self.binder.install_companion_extension(session)
        return self.interceptor.intercept(session, options)
