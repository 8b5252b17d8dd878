from __future__ import annotations

import time


def wait_until(predicate, timeout: float, interval: float = 0.2, max_attempts: int | None = None):
    """Waits for a predicate to return a truthy value.

    Stops after ``max_attempts`` calls or once ``timeout`` seconds have passed,
    whichever comes first, and returns the last value seen.
    """

    deadline = time.monotonic() + timeout
    attempts = 0
    result = None
    while True:
        result = predicate()
        attempts += 1
        if result:
            return result
        if max_attempts is not None and attempts >= max_attempts:
            return result
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return result
        time.sleep(min(interval, remaining))
