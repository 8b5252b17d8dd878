from __future__ import annotations

import logging
from pathlib import Path

from selfheal.config.schema import HealingSettings
from selfheal.core.session import AutomationSession
from selfheal.service.client import HealingServiceClient

log = logging.getLogger(__name__)

COMPANION_BROWSERS = {"firefox"}


class SessionBinder:
    """Attributes a live session to the healing token and prepares its browser."""

    def __init__(self, client: HealingServiceClient, settings: HealingSettings) -> None:
        self.client = client
        self.settings = settings

    def bind(self, session_id: str, session_token: str | None) -> None:
        self.client.set_token(session_id, session_token, self.settings.service_url)

    def needs_companion_extension(self, session: AutomationSession) -> bool:
        return session.browser_name in COMPANION_BROWSERS

    def install_companion_extension(self, session: AutomationSession) -> bool:
        addon_path = self.settings.firefox_addon_path
        if not addon_path or not Path(addon_path).is_file():
            log.warning(
                "Companion add-on not found at %s; healing for session %s is limited to usage logging",
                addon_path,
                session.session_id,
            )
            return False
        try:
            session.install_addon(str(Path(addon_path).resolve()), temporary=True)
        except Exception as exc:  # noqa: BLE001 - a missing add-on must not abort the session.
            log.warning("Could not install companion add-on for session %s: %s", session.session_id, exc)
            return False
        log.debug("Installed companion add-on into session %s", session.session_id)
        return True
