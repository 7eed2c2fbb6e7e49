"""Custom exceptions for UpdateWatch."""

from typing import Any, Optional


class UpdateWatchError(Exception):
    """Base class for all UpdateWatch errors."""
    pass


class SSRFProtectionError(UpdateWatchError):
    """Raised when a provider URL fails SSRF (Server-Side Request Forgery) validation.

    The URL was blocked because it points to a private/internal resource
    (localhost, private IPs, cloud metadata endpoints) or uses a scheme the
    provider does not allow.
    """
    pass


class TriggerConfigurationError(UpdateWatchError):
    """Raised when a trigger instance configuration fails validation.

    Configuration is validated once at startup, so this error surfaces while
    the dispatcher is being built and never during a watch cycle.
    """

    def __init__(self, trigger_id: str, message: str):
        """Initialize the exception.

        Args:
            trigger_id: Trigger identifier (``<provider>.<name>``)
            message: Human readable validation failure
        """
        self.trigger_id = trigger_id
        super().__init__(f"Invalid configuration for trigger {trigger_id}: {message}")


class UnknownTriggerError(UpdateWatchError):
    """Raised when a trigger provider or instance cannot be found."""
    pass


class UnsupportedTriggerModeError(UpdateWatchError):
    """Raised when a provider is asked to run in a mode it does not implement.

    Providers without a batch concept raise this from ``trigger_batch`` instead
    of silently degrading to per-container delivery.
    """

    def __init__(self, provider: str, mode: str):
        self.provider = provider
        self.mode = mode
        super().__init__(f"Trigger provider '{provider}' does not support '{mode}' mode")


class TriggerDeliveryError(UpdateWatchError):
    """Raised when a notification provider fails to deliver a message."""

    def __init__(self, provider: str, message: str, response: Optional[Any] = None):
        self.provider = provider
        self.response = response
        super().__init__(f"[{provider}] {message}")


class RollbackError(UpdateWatchError):
    """Raised when an automatic rollback cannot be performed."""
    pass
