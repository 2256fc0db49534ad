"""Notification pipeline error taxonomy.

ResolutionError and RenderError are terminal: the queue entry goes straight to
``failed``. The exception is ResolverBusy, raised before any lookup started,
which is retried. TransportError carries a ``retryable`` flag decided by the mailer.
DuplicateSuppressed is not a failure; the completion guard reports it as an
outcome.
"""


class NotificationError(Exception):
    """Base class for notification pipeline errors."""

    retryable = False

    @property
    def error_type(self) -> str:
        return type(self).__name__


class ResolutionError(NotificationError):
    """No primary recipient could be resolved, or the lookup failed or timed out."""


class ResolverBusy(ResolutionError):
    """Every resolver thread is still held by an earlier lookup."""

    retryable = True


class RenderError(NotificationError):
    """Template missing for the kind, or payload does not fit the template."""


class TransportError(NotificationError):
    """The outbound provider rejected or failed the send."""

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class DuplicateSuppressed(NotificationError):
    """An active queue entry already exists for the dedup key."""

    def __init__(self, key, existing_id=None) -> None:
        super().__init__(f"active entry already exists for {key}")
        self.key = key
        self.existing_id = existing_id
