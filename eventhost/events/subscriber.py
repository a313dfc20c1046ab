"""Subscriber base class and routing annotation.

Subscribers are declared once and listed explicitly when the registry is
built; there is no module scanning:

    @subscribe("order.*", "created", "updated")
    class OrderSubscriber(EventSubscriber):
        value_type = Order

        async def receive(self, event, context):
            ...
            return Result.success()
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, ClassVar, TypeVar

from eventhost.events.types import (
    EventData,
    ResultHandling,
    RunAsUser,
    UnhandledExceptionHandling,
)

if TYPE_CHECKING:
    from eventhost.events.context import ExecutionContext
    from eventhost.events.result import Result

SUBSCRIPTION_ATTRIBUTE = "__event_subscription__"

S = TypeVar("S", bound=type)


@dataclass(frozen=True)
class SubscriberDescriptor:
    """Routing entry: which subscriber type handles which subjects and actions.

    Attributes:
        subject_template: Template matched against the event subject
        actions: Case-folded actions; empty matches any action
        handler_type: The subscriber type to instantiate
    """

    subject_template: str
    actions: frozenset[str]
    handler_type: type

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "actions", frozenset(a.casefold() for a in (self.actions or ()) if a)
        )

    @classmethod
    def create(
        cls, subject_template: str, actions: Any, handler_type: type
    ) -> "SubscriberDescriptor":
        return cls(subject_template, actions, handler_type)

    def accepts_action(self, action: str | None) -> bool:
        if not self.actions:
            return True
        return action is not None and action.casefold() in self.actions


def subscribe(subject_template: str, *actions: str) -> Callable[[S], S]:
    """Annotate a subscriber class with the subject template and actions it handles."""
    if not subject_template:
        raise ValueError("A subject template is required.")

    def decorator(cls: S) -> S:
        setattr(cls, SUBSCRIPTION_ATTRIBUTE, (subject_template, tuple(actions)))
        return cls

    return decorator


def get_subscription(handler_type: type) -> tuple[str, tuple[str, ...]] | None:
    """Return the routing annotation declared directly on ``handler_type``."""
    return handler_type.__dict__.get(SUBSCRIPTION_ATTRIBUTE)


class EventSubscriber(ABC):
    """Abstract base class for event subscribers.

    Class attributes configure how the host prepares the event and how it
    handles the outcome. Handling overrides left as ``None`` fall back to the
    host-wide defaults.

    A new instance is created inside every event scope, so instances may hold
    per-event state but must not rely on it surviving between events.
    """

    # Type the event value is converted to; None means the event carries no value.
    value_type: ClassVar[Any] = None

    run_as_user: ClassVar[RunAsUser] = RunAsUser.ORIGINATING
    unhandled_exception_handling: ClassVar[UnhandledExceptionHandling] = (
        UnhandledExceptionHandling.THROW_EXCEPTION
    )
    consider_null_value_as_invalid_data: ClassVar[bool] = True

    invalid_event_data_handling: ClassVar[ResultHandling | None] = None
    data_not_found_handling: ClassVar[ResultHandling | None] = None
    invalid_data_handling: ClassVar[ResultHandling | None] = None

    # Overrides the host's max attempts when positive.
    max_attempts: ClassVar[int | None] = None

    @abstractmethod
    async def receive(self, event: EventData, context: "ExecutionContext") -> "Result":
        """Process an event.

        Args:
            event: Event metadata and converted value
            context: Execution identity and scope for this event

        Returns:
            Result: Typically ``Result.success()``

        Raises:
            InvalidEventDataError, DataValidationError, BusinessError,
            NotFoundError: classified by the host
        """
        pass
