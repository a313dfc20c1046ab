"""Per-event scope and execution context.

Nothing here is global. The host opens one ``EventScope`` per event, builds a
fresh ``ExecutionContext`` inside it and passes that context to the
subscriber explicitly. Resources registered with the scope are released when
the scope exits, whether the event succeeded, failed or was cancelled.
"""

from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncContextManager, Awaitable, Callable, TypeVar
from uuid import UUID

from eventhost.events.types import EventMetadata

T = TypeVar("T")


class EventScope:
    """Resource scope bound to exactly one event.

    Subclass to provide dependencies to subscribers, e.g. a database session
    opened in ``__aenter__`` and registered with ``enter_async_context``.
    """

    def __init__(self) -> None:
        self._exit_stack = AsyncExitStack()
        self._services: dict[Any, Any] = {}
        self._closed = False

    async def __aenter__(self) -> "EventScope":
        await self._exit_stack.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool | None:
        try:
            return await self._exit_stack.__aexit__(exc_type, exc, tb)
        finally:
            self._services.clear()
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def add_service(self, key: Any, service: Any) -> None:
        """Register a service instance for the lifetime of this scope."""
        self._services[key] = service

    def get_service(self, key: Any, default: Any = None) -> Any:
        return self._services.get(key, default)

    async def enter_async_context(self, manager: AsyncContextManager[T]) -> T:
        """Enter ``manager`` now and exit it when the scope closes."""
        return await self._exit_stack.enter_async_context(manager)

    def push_async_callback(self, callback: Callable[..., Awaitable[Any]], *args: Any) -> None:
        """Run ``callback`` when the scope closes."""
        self._exit_stack.push_async_callback(callback, *args)

    def create_subscriber(self, handler_type: type) -> Any:
        """Instantiate the subscriber for this event. Override to inject dependencies."""
        return handler_type()


@dataclass
class ExecutionContext:
    """Identity and correlation the subscriber executes under.

    Attributes:
        username: Originating or system username
        user_id: Originating user identifier
        tenant_id: Tenant the event belongs to
        correlation_id: Correlation identifier carried by the event
        scope: The event's resource scope
        timestamp: When processing of the event started
    """

    username: str
    user_id: str | None = None
    tenant_id: UUID | None = None
    correlation_id: str | None = None
    scope: EventScope | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class DispatchContext:
    """Mutable state of one in-flight dispatch, never shared between events.

    Attributes:
        originating: The raw inbound event
        attempt: Delivery attempt; 0 when unknown
        metadata: Extracted metadata, once available
        subscriber: Resolved subscriber instance, once available
        execution_context: Execution context, once the scope is open
    """

    originating: Any
    attempt: int = 0
    metadata: EventMetadata | None = None
    subscriber: Any = None
    execution_context: ExecutionContext | None = None

    @property
    def subject(self) -> str | None:
        return self.metadata.subject if self.metadata else None

    @property
    def action(self) -> str | None:
        return self.metadata.action if self.metadata else None
