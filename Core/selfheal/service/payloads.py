from __future__ import annotations

import json

from selfheal.config.schema import HealingSettings
from selfheal.service.parser import escape_script_string


def build_region_info(settings: HealingSettings) -> str:
    """Region routing hint forwarded with every log/heal call, already escaped."""

    return escape_script_string(
        json.dumps(
            {
                "region": settings.region,
                "serviceUrls": {
                    settings.region: {"endpoint": settings.service_host},
                },
            }
        )
    )
