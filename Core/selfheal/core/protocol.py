from __future__ import annotations

import logging
import time
from enum import Enum

from selenium.common.exceptions import InvalidSessionIdException

from selfheal.config.schema import AuthResult, HealingOptions, HealingSettings
from selfheal.core.exceptions import SessionClosedError
from selfheal.core.metadata import HealedLocator, HealingAttemptContext, LocatorAttempt, LookupResult
from selfheal.core.session import AutomationSession
from selfheal.logging.audit import HealingAuditLogger
from selfheal.service.client import HealingServiceClient
from selfheal.service.parser import escape_script_string
from selfheal.service.payloads import build_region_info
from selfheal.utils.wait import wait_until

log = logging.getLogger(__name__)


class HealingState(str, Enum):
    ATTEMPT_ORIGINAL = "attempt_original"
    LOG_AND_RETURN = "log_and_return"
    ATTEMPT_HEAL = "attempt_heal"
    EXECUTE_SCRIPT = "execute_script"
    POLL_RESULT = "poll_result"
    RETRY_WITH_HEALED_LOCATOR = "retry_with_healed_locator"
    RETURN_HEALED_RESULT = "return_healed_result"
    RETURN_ORIGINAL_FAILURE = "return_original_failure"


class HealingProtocol:
    """Runs one locator attempt through log, heal, poll, retry and fallback.

    The first failure is what callers see whenever healing does not produce a
    working locator. Any error raised while healing re-runs the untouched
    lookup once, so the command behaves as if healing were disabled.
    """

    def __init__(
        self,
        client: HealingServiceClient,
        auth_result: AuthResult,
        settings: HealingSettings,
        audit_logger: HealingAuditLogger | None = None,
    ) -> None:
        self.client = client
        self.auth_result = auth_result
        self.settings = settings
        self.audit_logger = audit_logger
        self.region_info = build_region_info(settings)

    def run(self, attempt: LocatorAttempt, session: AutomationSession, options: HealingOptions) -> LookupResult:
        context = self._context(attempt)
        self._enter(context, HealingState.ATTEMPT_ORIGINAL)
        result: LookupResult | None = None
        try:
            result = attempt.perform(attempt.using, attempt.value)
            if not result.failed:
                self._enter(context, HealingState.LOG_AND_RETURN)
                self._log_usage(context, session)
                return self._finish(context, result)
            if not (options.self_heal and self.auth_result.is_healing_enabled):
                self._enter(context, HealingState.RETURN_ORIGINAL_FAILURE)
                return self._finish(context, result)

            healed = self._heal(context, session)
            context.healed = healed
            if healed is None:
                self._enter(context, HealingState.RETURN_ORIGINAL_FAILURE)
                return self._finish(context, result)

            self._enter(context, HealingState.RETRY_WITH_HEALED_LOCATOR)
            self._ensure_active(session)
            retried = attempt.perform(healed.using, healed.value)
            if retried.failed:
                log.info("Healed locator %s: %s did not match either", healed.selector, healed.value)
                self._enter(context, HealingState.RETURN_ORIGINAL_FAILURE)
                return self._finish(context, result)
            log.info("Healing worked, element found: %s: %s", healed.selector, healed.value)
            self._enter(context, HealingState.RETURN_HEALED_RESULT)
            return self._finish(context, retried)
        except (SessionClosedError, InvalidSessionIdException) as exc:
            log.debug("Session %s went away while healing %s: %s", attempt.session_id, attempt.value, exc)
            self._enter(context, HealingState.RETURN_ORIGINAL_FAILURE)
            return self._finish(context, result if result is not None else LookupResult(error=exc))
        except Exception as exc:  # noqa: BLE001 - healing must never break the lookup.
            if options.self_heal:
                log.warning("Something went wrong while healing. Disabling healing for this command: %s", exc)
            else:
                log.debug("Error in findElement: %s using: %s value: %s", exc, attempt.using, attempt.value)
        self._enter(context, HealingState.RETURN_ORIGINAL_FAILURE)
        return self._finish(context, attempt.perform(attempt.using, attempt.value))

    def _context(self, attempt: LocatorAttempt) -> HealingAttemptContext:
        return HealingAttemptContext(
            locator_type=escape_script_string(attempt.using),
            locator_value=escape_script_string(attempt.value),
            session_id=attempt.session_id,
            user_id=self.auth_result.user_id,
            group_id=self.auth_result.group_id,
            is_group_ai_enabled=self.auth_result.is_group_ai_enabled,
            region_info=self.region_info,
        )

    def _log_usage(self, context: HealingAttemptContext, session: AutomationSession) -> None:
        script = self.client.log_data(
            context.locator_type,
            context.locator_value,
            context.group_id,
            context.session_id,
            context.region_info,
        )
        if script:
            session.execute(script)

    def _heal(self, context: HealingAttemptContext, session: AutomationSession) -> HealedLocator | None:
        self._enter(context, HealingState.ATTEMPT_HEAL)
        log.info("findElement failed, trying to heal")
        script = self.client.heal_failure(
            context.locator_type,
            context.locator_value,
            context.user_id,
            context.group_id,
            context.session_id,
            context.is_group_ai_enabled,
            context.region_info,
        )
        if not script:
            return None

        self._enter(context, HealingState.EXECUTE_SCRIPT)
        self._ensure_active(session)
        session.execute(script)

        self._enter(context, HealingState.POLL_RESULT)
        return self._poll(context, session)

    def _poll(self, context: HealingAttemptContext, session: AutomationSession) -> HealedLocator | None:
        deadline = time.monotonic() + self.settings.poll_timeout_seconds

        def poll_once() -> HealedLocator | None:
            self._ensure_active(session)
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            return self.client.poll_result(
                self.settings.service_url,
                context.session_id,
                self.auth_result.session_token,
                timeout=remaining,
            )

        return wait_until(
            poll_once,
            timeout=self.settings.poll_timeout_seconds,
            interval=self.settings.poll_interval_seconds,
            max_attempts=self.settings.poll_max_attempts,
        )

    @staticmethod
    def _ensure_active(session: AutomationSession) -> None:
        if not session.is_active:
            raise SessionClosedError(f"Session {session.session_id} closed during healing")

    @staticmethod
    def _enter(context: HealingAttemptContext, state: HealingState) -> None:
        context.trail.append(state.value)

    def _finish(self, context: HealingAttemptContext, result: LookupResult) -> LookupResult:
        log.debug(
            "Lookup %s=%s on session %s finished: %s",
            context.locator_type,
            context.locator_value,
            context.session_id,
            " -> ".join(context.trail),
        )
        if self.audit_logger is not None and HealingState.ATTEMPT_HEAL.value in context.trail:
            try:
                self.audit_logger.write(context, success=not result.failed)
            except OSError as exc:
                log.debug("Could not write healing audit entry: %s", exc)
        return result
