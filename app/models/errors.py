class SyncError(Exception):
    """Base exception for the conversion sync job."""


class ConfigurationError(SyncError, ValueError):
    """Raised at setup when a required setting is missing or invalid."""


class FetchError(SyncError):
    """Raised when the event or person API returns an unusable response."""


class DeliveryError(SyncError):
    """Raised when the webhook rejects or never receives a conversion."""
