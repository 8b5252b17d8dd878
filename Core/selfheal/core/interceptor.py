from __future__ import annotations

import logging

from selfheal.config.schema import HealingOptions
from selfheal.core.metadata import LocatorAttempt, LookupFn, LookupResult
from selfheal.core.protocol import HealingProtocol
from selfheal.core.session import AutomationSession, LookupMiddleware

log = logging.getLogger(__name__)

MIDDLEWARE_NAME = "selfheal.find_element"


class CommandInterceptor:
    """Routes a session's element lookups through the healing protocol."""

    def __init__(self, protocol: HealingProtocol) -> None:
        self.protocol = protocol

    def intercept(self, session: AutomationSession, options: HealingOptions) -> bool:
        installed = session.register_lookup_middleware(MIDDLEWARE_NAME, self.middleware(session, options))
        if not installed:
            log.debug("Healing lookup already installed on session %s", session.session_id)
        return installed

    def middleware(self, session: AutomationSession, options: HealingOptions) -> LookupMiddleware:
        def healing_lookup(perform: LookupFn, using: str, value: str) -> LookupResult:
            attempt = LocatorAttempt(using=using, value=value, session_id=session.session_id, perform=perform)
            with session.command_lock:
                try:
                    return self.protocol.run(attempt, session, options)
                except Exception as exc:  # noqa: BLE001 - lookups must resolve even if healing is broken.
                    log.debug("Healing lookup failed for %s=%s: %s", using, value, exc)
                try:
                    return perform(using, value)
                except Exception as exc:  # noqa: BLE001 - surfaced to the caller as a failed lookup.
                    return LookupResult(error=exc)

        return healing_lookup
