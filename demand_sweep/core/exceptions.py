"""Custom exception classes for the application."""

from typing import Any


class DemandSweepError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(DemandSweepError):
    """Category catalog or settings are invalid."""

    pass


class CategoryNotFoundError(DemandSweepError):
    """Category is not defined in the catalog."""

    def __init__(self, category_id: str) -> None:
        super().__init__(f"Category not found: {category_id}", {"category_id": category_id})


# Corpus Errors
class CorpusError(DemandSweepError):
    """Base class for keyword corpus errors."""

    pass


class SnapshotNotFoundError(CorpusError):
    """Category snapshot not found."""

    def __init__(self, snapshot_id: str) -> None:
        super().__init__(f"Snapshot not found: {snapshot_id}", {"snapshot_id": snapshot_id})


class SnapshotBusyError(CorpusError):
    """Another growth operation holds the snapshot."""

    def __init__(self, snapshot_id: str) -> None:
        super().__init__(
            f"Snapshot {snapshot_id} is already being grown",
            {"snapshot_id": snapshot_id},
        )


class LifecycleTransitionError(CorpusError):
    """Lifecycle change is not allowed without an explicit downgrade."""

    def __init__(self, snapshot_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Cannot move snapshot {snapshot_id} from {current} to {requested}",
            {"snapshot_id": snapshot_id, "current": current, "requested": requested},
        )


# External API Errors
class ExternalAPIError(DemandSweepError):
    """External API call failed."""

    def __init__(self, api_name: str, message: str) -> None:
        super().__init__(f"{api_name} API error: {message}", {"api_name": api_name})


class APIKeyMissingError(ExternalAPIError):
    """Required API credentials are not configured."""

    def __init__(self, api_name: str) -> None:
        super().__init__(api_name, "API credentials not configured")


class AuthenticationFailedError(ExternalAPIError):
    """Provider rejected the supplied credentials."""

    def __init__(self, api_name: str, message: str = "Authentication failed") -> None:
        super().__init__(api_name, message)


class RateLimitExceededError(ExternalAPIError):
    """Rate limit exceeded for external API."""

    def __init__(self, api_name: str) -> None:
        super().__init__(api_name, "Rate limit exceeded")


class ExternalAPITimeoutError(ExternalAPIError):
    """External API call did not finish within the request timeout."""

    def __init__(self, api_name: str) -> None:
        super().__init__(api_name, "Request timed out")
