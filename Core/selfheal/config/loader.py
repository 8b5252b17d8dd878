from __future__ import annotations

import json
import os
from pathlib import Path

from selfheal.config.schema import HealingOptions, HealingSettings, LaunchConfig


class ConfigLoader:
    """Loads and validates the JSON healing settings file."""

    @staticmethod
    def load(path: str | Path) -> HealingSettings:
        config_path = Path(path)
        with config_path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
        return HealingSettings.model_validate(payload)


def resolve_credentials(
    config: LaunchConfig,
    options: HealingOptions,
    environ=None,
) -> tuple[str, str] | None:
    """Environment variables win, then service options, then the launch config."""

    env = os.environ if environ is None else environ
    candidates = (
        (env.get("SELFHEAL_USERNAME") or options.user, env.get("SELFHEAL_ACCESS_KEY") or options.key),
        (config.user, config.key),
    )
    for user, key in candidates:
        if isinstance(user, str) and isinstance(key, str) and user and key:
            return user, key
    return None
