from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from pathlib import Path

from selfheal.core.metadata import HealingAttemptContext


class HealingAuditLogger:
    """Persists finished healing attempts as JSON lines."""

    def __init__(self, root: str | Path = "artifacts") -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.attempts_path = self.root / "healing_attempts.jsonl"
        self._lock = threading.Lock()

    def write(self, context: HealingAttemptContext, success: bool) -> None:
        payload = {
            "timestamp": datetime.now(UTC).isoformat(),
            "session_id": context.session_id,
            "locator_type": context.locator_type,
            "locator_value": context.locator_value,
            "healed_selector": context.healed.selector if context.healed else None,
            "healed_value": context.healed.value if context.healed else None,
            "states": list(context.trail),
            "success": success,
        }
        with self._lock, self.attempts_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload) + "\n")

    def read_attempts(self) -> list[dict]:
        if not self.attempts_path.exists():
            return []
        lines = self.attempts_path.read_text(encoding="utf-8").splitlines()
        return [json.loads(line) for line in lines if line.strip()]
