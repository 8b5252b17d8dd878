from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any
from urllib import error, request

from selfheal.config.schema import AuthResult, HealingSettings
from selfheal.core.exceptions import AuthenticationError, ServiceRequestError, UpgradeRequiredError
from selfheal.core.metadata import HealedLocator
from selfheal.service.parser import parse_healed_locator, parse_script

log = logging.getLogger(__name__)


class HealingServiceClient(ABC):
    """Transport-neutral interface of the remote healing service."""

    @abstractmethod
    def init(self, key: str, user: str, endpoint: str, client_version: str) -> AuthResult:
        raise NotImplementedError

    @abstractmethod
    def set_token(self, session_id: str, token: str | None, endpoint: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def log_data(
        self,
        locator_type: str,
        locator_value: str,
        group_id: str | None,
        session_id: str,
        region_info: str,
    ) -> str | None:
        raise NotImplementedError

    @abstractmethod
    def heal_failure(
        self,
        locator_type: str,
        locator_value: str,
        user_id: str | None,
        group_id: str | None,
        session_id: str,
        is_group_ai_enabled: bool | None,
        region_info: str,
    ) -> str | None:
        raise NotImplementedError

    @abstractmethod
    def poll_result(
        self,
        endpoint: str,
        session_id: str,
        token: str | None,
        timeout: float | None = None,
    ) -> HealedLocator | None:
        """Asks once for a healed locator; ``timeout`` caps this single request."""
        raise NotImplementedError


class HttpHealingServiceClient(HealingServiceClient):
    api_prefix = "/api/v1"

    def __init__(self, settings: HealingSettings) -> None:
        self.settings = settings

    def init(self, key: str, user: str, endpoint: str, client_version: str) -> AuthResult:
        try:
            response = post_json(
                self._url(endpoint, "init"),
                {"user": user, "clientVersion": client_version},
                headers=self._headers(key=key, user=user),
                timeout=self.settings.request_timeout_seconds,
            )
        except ServiceRequestError as exc:
            if exc.status == 426:
                raise UpgradeRequiredError(str(exc), status=exc.status) from exc
            if exc.status in (401, 403):
                raise AuthenticationError(str(exc), status=exc.status) from exc
            raise
        return AuthResult.model_validate(response)

    def set_token(self, session_id: str, token: str | None, endpoint: str) -> None:
        post_json(
            self._url(endpoint, "token"),
            {"sessionId": session_id, "token": token},
            headers=self._headers(token=token),
            timeout=self.settings.request_timeout_seconds,
        )

    def log_data(
        self,
        locator_type: str,
        locator_value: str,
        group_id: str | None,
        session_id: str,
        region_info: str,
    ) -> str | None:
        response = post_json(
            self._url(self.settings.service_url, "log"),
            {
                "locatorType": locator_type,
                "locatorValue": locator_value,
                "groupId": group_id,
                "sessionId": session_id,
                "regionInfo": region_info,
            },
            headers=self._headers(),
            timeout=self.settings.request_timeout_seconds,
        )
        return parse_script(response)

    def heal_failure(
        self,
        locator_type: str,
        locator_value: str,
        user_id: str | None,
        group_id: str | None,
        session_id: str,
        is_group_ai_enabled: bool | None,
        region_info: str,
    ) -> str | None:
        response = post_json(
            self._url(self.settings.service_url, "heal"),
            {
                "locatorType": locator_type,
                "locatorValue": locator_value,
                "userId": user_id,
                "groupId": group_id,
                "sessionId": session_id,
                "isGroupAIEnabled": bool(is_group_ai_enabled),
                "regionInfo": region_info,
            },
            headers=self._headers(),
            timeout=self.settings.request_timeout_seconds,
        )
        return parse_script(response)

    def poll_result(
        self,
        endpoint: str,
        session_id: str,
        token: str | None,
        timeout: float | None = None,
    ) -> HealedLocator | None:
        request_timeout = self.settings.request_timeout_seconds
        if timeout is not None:
            request_timeout = min(request_timeout, timeout)
        response = post_json(
            self._url(endpoint, "poll"),
            {"sessionId": session_id},
            headers=self._headers(token=token),
            timeout=request_timeout,
        )
        return parse_healed_locator(response)

    def _url(self, endpoint: str, operation: str) -> str:
        return f"{endpoint.rstrip('/')}{self.api_prefix}/{operation}"

    def _headers(self, *, key: str | None = None, user: str | None = None, token: str | None = None) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "x-selfheal-client": f"selfheal-python/{self.settings.client_version}",
        }
        if user and key:
            headers["x-selfheal-user"] = user
            headers["x-selfheal-key"] = key
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers


def create_healing_client(settings: HealingSettings | None = None) -> HealingServiceClient:
    return HttpHealingServiceClient(settings or HealingSettings.from_env())


def post_json(
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str],
    timeout: float = 30,
) -> dict[str, Any]:
    encoded = json.dumps(payload).encode("utf-8")
    req = request.Request(url, data=encoded, headers=headers, method="POST")
    try:
        with request.urlopen(req, timeout=timeout) as response:
            raw = response.read().decode("utf-8")
    except error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")
        raise ServiceRequestError(
            f"Healing service request failed with status {exc.code}: {detail}",
            status=exc.code,
        ) from exc
    except error.URLError as exc:
        raise ServiceRequestError(f"Healing service request could not be completed: {exc.reason}") from exc
    except TimeoutError as exc:
        raise ServiceRequestError(f"Healing service did not answer within {timeout}s") from exc
    if not raw.strip():
        return {}
    return json.loads(raw)
