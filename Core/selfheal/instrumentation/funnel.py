from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from selfheal.config.schema import AuthResult, RunConfig
from selfheal.core.auth import UPGRADE_REQUIRED_MESSAGE
from selfheal.service.client import post_json

log = logging.getLogger(__name__)

SERVICE_DOWN = "HealingServiceDown"
INVALID_AUTH = "HealingInvalidAuthResponse"
AUTH_FAILURE = "HealingAuthFailure"
INIT_SUCCESSFUL = "HealingInitSuccessful"
INIT_FAILED = "HealingInitFailed"


class EventSink(ABC):
    """Fire-and-forget destination for instrumentation events."""

    @abstractmethod
    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        raise NotImplementedError


class NullEventSink(EventSink):
    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        log.debug("Instrumentation event %s dropped, no sink configured", event_type)


class HttpEventSink(EventSink):
    def __init__(self, url: str, timeout: float = 5) -> None:
        self.url = url
        self.timeout = timeout

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        try:
            post_json(
                self.url,
                {"event_type": event_type, "event_properties": payload},
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except Exception as exc:  # noqa: BLE001 - events are best effort.
            log.debug("Could not send instrumentation event %s: %s", event_type, exc)


class HealingInstrumentation:
    """Classifies the authentication outcome into user warnings and funnel events."""

    def __init__(self, sink: EventSink | None = None) -> None:
        self.sink = sink or NullEventSink()
        self._warned: set[str] = set()

    def handle(self, auth_result: AuthResult, run_config: RunConfig, self_heal: bool) -> None:
        try:
            if auth_result.message == UPGRADE_REQUIRED_MESSAGE:
                if self_heal:
                    self._warn_once(
                        "Please upgrade the selfheal client to the latest version to use the self-healing feature."
                    )
                return
            status = auth_result.status
            if not auth_result.is_authenticated:
                self._authentication_failure(status, run_config, self_heal)
                return
            if auth_result.user_id and auth_result.group_id:
                self._authentication_success(auth_result, run_config, self_heal)
                return
            if not status or status >= 400:
                self._initialization_failure(status, run_config, self_heal)
        except Exception as exc:  # noqa: BLE001 - instrumentation is never fatal.
            log.debug("Error in handling healing instrumentation: %s", exc)

    def _authentication_failure(self, status: int | None, run_config: RunConfig, self_heal: bool) -> None:
        if status is not None and status >= 500:
            if self_heal:
                self._warn_once("Something went wrong. Disabling healing for this session. Please try again later.")
            self._send(SERVICE_DOWN, run_config)
        else:
            if self_heal:
                self._warn_once("Authentication Failed. Disabling Healing for this session.")
            self._send(AUTH_FAILURE, run_config)

    def _authentication_success(self, auth_result: AuthResult, run_config: RunConfig, self_heal: bool) -> None:
        if not auth_result.is_healing_enabled and self_heal:
            self._warn_once("Healing is not enabled for your group, please contact the admin")
        elif auth_result.is_healing_enabled:
            self._send(INIT_SUCCESSFUL, run_config)

    def _initialization_failure(self, status: int | None, run_config: RunConfig, self_heal: bool) -> None:
        if status is not None and status >= 400:
            self._send(INIT_FAILED, run_config)
        elif not status and self_heal:
            self._send(INVALID_AUTH, run_config)
        if self_heal:
            self._warn_once("Authentication Failed. Healing will be disabled for this session.")

    def _send(self, event_type: str, run_config: RunConfig) -> None:
        self.sink.emit(
            event_type,
            {
                "userName": run_config.user_name,
                "framework": run_config.framework,
                "buildName": run_config.build_name,
            },
        )

    def _warn_once(self, message: str) -> None:
        if message in self._warned:
            return
        self._warned.add(message)
        log.warning(message)
