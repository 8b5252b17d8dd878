class HealingError(RuntimeError):
    """Raised when locator healing fails."""


class ServiceRequestError(HealingError):
    """Raised when the remote healing service answers with an error."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class AuthenticationError(ServiceRequestError):
    """Raised when the healing service rejects credentials."""


class UpgradeRequiredError(AuthenticationError):
    """Raised when the client version is no longer accepted."""


class SetupError(HealingError):
    """Raised when a session cannot be prepared for healing."""


class SessionClosedError(HealingError):
    """Raised when the owning session went away mid-attempt."""
