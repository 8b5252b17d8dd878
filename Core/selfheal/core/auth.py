from __future__ import annotations

import logging

from selfheal.config.schema import AuthResult, HealingSettings
from selfheal.core.exceptions import UpgradeRequiredError
from selfheal.service.client import HealingServiceClient

log = logging.getLogger(__name__)

UPGRADE_REQUIRED_MESSAGE = "Upgrade required"
UPGRADE_REQUIRED_STATUS = 426


class AuthGate:
    """Authenticates a user/key pair once per launch."""

    def __init__(self, client: HealingServiceClient, settings: HealingSettings) -> None:
        self.client = client
        self.settings = settings

    def authenticate(self, user: str, key: str) -> AuthResult:
        try:
            result = self.client.init(key, user, self.settings.service_url, self.settings.client_version)
        except Exception as exc:  # noqa: BLE001 - every failure becomes an unauthenticated result.
            status = getattr(exc, "status", None)
            log.debug("Healing authentication failed: %s", exc)
            upgrade = isinstance(exc, UpgradeRequiredError) or status == UPGRADE_REQUIRED_STATUS
            message = UPGRADE_REQUIRED_MESSAGE if upgrade else str(exc)
            return AuthResult(is_authenticated=False, status=status, message=message)
        if result.status == UPGRADE_REQUIRED_STATUS and result.message != UPGRADE_REQUIRED_MESSAGE:
            return result.model_copy(update={"is_authenticated": False, "message": UPGRADE_REQUIRED_MESSAGE})
        return result
