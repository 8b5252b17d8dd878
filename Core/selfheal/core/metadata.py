from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable


@dataclass(slots=True)
class LookupResult:
    element: Any = None
    error: BaseException | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def unwrap(self):
        if self.error is not None:
            raise self.error
        return self.element


LookupFn = Callable[[str, str], LookupResult]


@dataclass(slots=True)
class LocatorAttempt:
    using: str
    value: str
    session_id: str
    perform: LookupFn


@dataclass(slots=True)
class HealedLocator:
    selector: str
    value: str
    using: str


@dataclass(slots=True)
class HealingAttemptContext:
    """Escaped identity sent to the service for one lookup."""

    locator_type: str
    locator_value: str
    session_id: str
    user_id: str | None
    group_id: str | None
    is_group_ai_enabled: bool | None
    region_info: str
    healed: HealedLocator | None = None
    trail: list[str] = field(default_factory=list)
