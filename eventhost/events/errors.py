"""Error types for the event subscriber host.

Configuration errors are fatal at startup. Handler signals are raised by
subscribers and classified into a result by the host. The unhandled error is
the only exception the host lets escape a dispatch.
"""

from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from eventhost.events.result import Result


class EventSubscriberError(Exception):
    """Base error for the event subscriber host."""

    pass


# -----------------------------------------------------------------------------
# Configuration errors
# -----------------------------------------------------------------------------


class SubscriberConfigurationError(EventSubscriberError):
    """A subscriber type or registration is invalid."""

    pass


class AmbiguousRoutingError(SubscriberConfigurationError):
    """More than one subscriber matches the same subject and action."""

    def __init__(self, message: str, subscribers: Iterable[type] = ()):
        self.subscribers = tuple(subscribers)
        super().__init__(message)


# -----------------------------------------------------------------------------
# Handler signals
# -----------------------------------------------------------------------------


class InvalidEventDataError(EventSubscriberError):
    """The event content cannot be processed by the subscriber."""

    pass


class DataValidationError(EventSubscriberError):
    """The event value failed validation.

    Args:
        message: Summary message
        messages: Individual validation messages
    """

    def __init__(self, message: str | None = None, messages: Iterable[str] | None = None):
        self.messages = list(messages or [])
        if message is None:
            message = "; ".join(self.messages) if self.messages else "A data validation error occurred."
        super().__init__(message)


class BusinessError(EventSubscriberError):
    """A business rule rejected the event."""

    pass


class NotFoundError(EventSubscriberError):
    """Data the event refers to does not exist."""

    def __init__(self, message: str = "Data not found."):
        super().__init__(message)


# -----------------------------------------------------------------------------
# Host sentinel
# -----------------------------------------------------------------------------


class EventSubscriberUnhandledError(EventSubscriberError):
    """Raised by the host when a result is handled with ``THROW_EXCEPTION``.

    Wraps the already classified ``Result`` so the transport can decide on
    redelivery or dead-lettering. Propagates through nested hosts unchanged.
    """

    def __init__(self, result: "Result"):
        self.result = result
        super().__init__(str(result))
