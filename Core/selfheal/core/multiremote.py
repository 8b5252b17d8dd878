from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from selfheal.config.loader import resolve_credentials
from selfheal.config.schema import AuthResult, HealingOptions, LaunchConfig, RunConfig
from selfheal.core.capabilities import CapabilityAugmenter
from selfheal.core.session import AutomationSession
from selfheal.instrumentation.funnel import HealingInstrumentation

log = logging.getLogger(__name__)


class MultiRemoteCoordinator:
    """Applies augmentation and session setup to each named sub-session independently."""

    def __init__(
        self,
        augmenter: CapabilityAugmenter,
        instrumentation: HealingInstrumentation,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.augmenter = augmenter
        self.instrumentation = instrumentation
        self.environ = environ

    def augment_all(
        self,
        auth_result: AuthResult,
        config: LaunchConfig,
        run_config: RunConfig,
        options: HealingOptions,
        named_capabilities: dict[str, dict[str, Any]],
    ) -> dict[str, dict[str, Any]]:
        for name, entry in named_capabilities.items():
            try:
                capabilities = entry.get("capabilities")
                if not isinstance(capabilities, dict) or not self.augmenter.is_eligible(entry):
                    log.debug("Skipping healing capabilities for %s", name)
                    continue
                if resolve_credentials(config, options, self.environ) is None:
                    continue
                self.instrumentation.handle(auth_result, run_config, options.self_heal)
                entry["capabilities"] = self.augmenter.augment(auth_result, options, capabilities)
            except Exception as exc:  # noqa: BLE001 - siblings keep their own setup.
                _report(options, f"Could not add healing capabilities for {name}: {exc}")
        return named_capabilities

    def setup_all(
        self,
        named_sessions: Mapping[str, AutomationSession],
        setup_one: Callable[[AutomationSession], None],
        options: HealingOptions,
    ) -> None:
        for name, session in named_sessions.items():
            try:
                setup_one(session)
            except Exception as exc:  # noqa: BLE001 - siblings keep their own setup.
                _report(options, f"Error while setting up self-healing for {name}: {exc}")


def _report(options: HealingOptions, message: str) -> None:
    if options.self_heal:
        log.warning(message)
    else:
        log.debug(message)
