"""Event subscriber host.

Receives inbound events and drives each through one lifecycle:

    metadata → subject check → poison check → scope → routing →
    value conversion → execution context → subscriber → result policy

Every exit path produces a ``Result`` that passes through the result
handling policy. The only exception a dispatch raises is
``EventSubscriberUnhandledError`` (the policy chose THROW_EXCEPTION, or a
nested host raised it); configuration errors such as ambiguous routing are
fatal and propagate as well.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, AsyncContextManager, Callable, Iterable

from eventhost.events.audit import AuditWriter, LoggerAuditWriter
from eventhost.events.context import DispatchContext, EventScope, ExecutionContext
from eventhost.events.converter import CloudEventConverter, EventConverter
from eventhost.events.errors import (
    BusinessError,
    DataValidationError,
    EventSubscriberUnhandledError,
    InvalidEventDataError,
    NotFoundError,
)
from eventhost.events.poison import PoisonMessageTracker
from eventhost.events.policy import ResultHandlingPolicy
from eventhost.events.registry import SubscriberRegistry
from eventhost.events.result import Result
from eventhost.events.subscriber import EventSubscriber
from eventhost.events.types import (
    EventData,
    EventMetadata,
    PoisonMessageAction,
    RunAsUser,
    UnhandledExceptionHandling,
)

if TYPE_CHECKING:
    from eventhost.config import Settings

logger = logging.getLogger(__name__)

UpdateExecutionContext = Callable[[ExecutionContext, EventSubscriber, EventMetadata], None]


@dataclass
class BatchResult:
    """Result of dispatching a batch of events.

    Attributes:
        started_at: When the batch started
        completed_at: When the batch completed
        results: Results of events that completed, in completion order
        errors: Errors raised for events handled with THROW_EXCEPTION
        unprocessed: Events not attempted because an earlier one raised
    """

    started_at: datetime
    completed_at: datetime | None = None
    results: list[Result] = field(default_factory=list)
    errors: list[EventSubscriberUnhandledError] = field(default_factory=list)
    unprocessed: int = 0

    @property
    def failed(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": (
                (self.completed_at - self.started_at).total_seconds() * 1000
                if self.completed_at
                else None
            ),
            "processed_count": len(self.results),
            "failed_count": len(self.errors),
            "unprocessed": self.unprocessed,
            "statuses": [r.status.value for r in self.results],
        }


class EventSubscriberHost:
    """Dispatches inbound events to their single registered subscriber.

    Args:
        registry: Subscriber registry, read-only and shared
        converter: Converts raw events to metadata and values
        settings: Host settings (defaults to environment settings)
        audit_writer: Sink for audited results (defaults to logging)
        scope_factory: Creates the per-event scope (defaults to ``EventScope``)
        poison_tracker: Optional redelivery tracker
        update_execution_context: Optional hook to adjust the execution context
    """

    def __init__(
        self,
        registry: SubscriberRegistry,
        converter: EventConverter | None = None,
        *,
        settings: "Settings | None" = None,
        audit_writer: AuditWriter | None = None,
        scope_factory: Callable[[], AsyncContextManager[EventScope]] | None = None,
        poison_tracker: PoisonMessageTracker | None = None,
        update_execution_context: UpdateExecutionContext | None = None,
    ) -> None:
        if settings is None:
            from eventhost.config import get_settings

            settings = get_settings()
        self.settings = settings
        self.registry = registry
        self.converter = converter or CloudEventConverter()
        self.audit_writer = audit_writer or LoggerAuditWriter()
        self._scope_factory = scope_factory or EventScope
        self._poison_tracker = poison_tracker
        self._update_execution_context = update_execution_context
        self._policy = ResultHandlingPolicy(self.settings, self.audit_writer)
        self._shutting_down = False

    @classmethod
    def create(
        cls,
        subscribers: Iterable[Any],
        converter: EventConverter | None = None,
        *,
        settings: "Settings | None" = None,
        **kwargs: Any,
    ) -> "EventSubscriberHost":
        """Build a host and its registry from a list of subscriber types."""
        if settings is None:
            from eventhost.config import get_settings

            settings = get_settings()
        registry = SubscriberRegistry.from_settings(subscribers, settings)
        return cls(registry, converter, settings=settings, **kwargs)

    @property
    def multiple_messages_supported(self) -> bool:
        return self.settings.EVENTS_MULTIPLE_MESSAGES

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    def shutdown(self) -> None:
        """Mark a graceful shutdown; cancelled dispatches then propagate unclassified."""
        self._shutting_down = True

    # -------------------------------------------------------------------------
    # Single event
    # -------------------------------------------------------------------------

    async def receive(self, originating: Any, *, attempt: int = 0) -> Result:
        """Process one inbound event.

        Args:
            originating: The raw event as delivered by the transport
            attempt: Delivery attempt reported by the transport; 0 when unknown

        Returns:
            Result: The classified and handled result

        Raises:
            EventSubscriberUnhandledError: The result was handled with THROW_EXCEPTION
        """
        context = DispatchContext(originating=originating, attempt=attempt)

        try:
            metadata = await self.converter.to_metadata(originating)
        except Exception as e:
            return await self._check_result(
                context,
                Result.invalid_event_data(
                    e,
                    "EventData is invalid; unable to convert EventData from the "
                    f"originating value: {e}",
                ),
            )

        if metadata is None:
            return await self._check_result(
                context,
                Result.invalid_event_data(
                    reason="EventData is invalid; unable to convert EventData from "
                    "the originating value."
                ),
            )

        context.metadata = metadata
        if not metadata.subject:
            return await self._check_result(
                context,
                Result.invalid_event_data(reason="EventData is invalid; Subject is required."),
            )

        logger.debug(
            "Event received",
            extra={
                "subject": metadata.subject,
                "action": metadata.action,
                "event_id": str(metadata.event_id) if metadata.event_id else None,
                "attempt": attempt,
            },
        )

        if self._poison_tracker is not None:
            check = await self._poison_tracker.check(context)
            if check.action == PoisonMessageAction.POISON_SKIP:
                return await self._check_result(
                    context, Result.poison_skipped(metadata.subject, metadata.action)
                )
            if check.action == PoisonMessageAction.POISON_MISMATCH:
                return await self._check_result(
                    context, Result.poison_mismatch(metadata.subject, metadata.action)
                )
            if check.attempts > context.attempt:
                context.attempt = check.attempts

        async with self._scope_factory() as scope:
            return await self._receive_in_scope(context, scope)

    async def _receive_in_scope(self, context: DispatchContext, scope: EventScope) -> Result:
        metadata = context.metadata

        handler_type = self.registry.resolve(metadata.subject, metadata.action)
        if handler_type is None:
            return await self._check_result(context, Result.not_subscribed())

        subscriber = scope.create_subscriber(handler_type)
        context.subscriber = subscriber

        try:
            event = await self._get_event_data(context, subscriber)
        except Exception as e:
            return await self._check_result(context, Result.invalid_event_data(e))

        if (
            subscriber.value_type is not None
            and subscriber.consider_null_value_as_invalid_data
            and event.value is None
        ):
            return await self._check_result(
                context,
                Result.invalid_event_data(reason="EventData is invalid; Value must not be null."),
            )

        execution_context = self._create_execution_context(subscriber, metadata, scope)
        context.execution_context = execution_context

        try:
            result = await subscriber.receive(event, execution_context)
        except EventSubscriberUnhandledError:
            raise
        except InvalidEventDataError as e:
            result = Result.invalid_event_data(e)
        except DataValidationError as e:
            result = Result.from_validation_error(e)
        except BusinessError as e:
            result = Result.from_business_error(e)
        except NotFoundError as e:
            result = Result.data_not_found(str(e))
            result.exception = e
        except asyncio.CancelledError as e:
            if self._shutting_down:
                raise
            await self._check_result(
                context, Result.unhandled_exception(e, "Event processing was cancelled.")
            )
            raise
        except Exception as e:
            logger.error(
                "Subscriber raised an unhandled exception",
                extra={
                    "subscriber": type(subscriber).__name__,
                    "subject": metadata.subject,
                    "action": metadata.action,
                    "error": str(e),
                },
                exc_info=True,
            )
            if subscriber.unhandled_exception_handling == UnhandledExceptionHandling.CONTINUE:
                result = Result.exception_continue(e)
            else:
                result = Result.unhandled_exception(e)
        else:
            if not isinstance(result, Result):
                result = Result.unhandled_exception(
                    TypeError(
                        f"Subscriber '{type(subscriber).__name__}' returned "
                        f"{type(result).__name__} instead of a Result."
                    )
                )

        return await self._check_result(context, result)

    async def _get_event_data(self, context: DispatchContext, subscriber: EventSubscriber) -> EventData:
        value = None
        if subscriber.value_type is not None:
            value = await self.converter.to_value(subscriber.value_type, context.originating)
        return EventData(metadata=context.metadata, value=value)

    def _create_execution_context(
        self, subscriber: EventSubscriber, metadata: EventMetadata, scope: EventScope
    ) -> ExecutionContext:
        system_username = self.settings.EVENTS_SYSTEM_USERNAME
        if subscriber.run_as_user == RunAsUser.ORIGINATING:
            username = metadata.username or system_username
        else:
            username = system_username

        execution_context = ExecutionContext(
            username=username,
            user_id=metadata.user_id,
            tenant_id=metadata.tenant_id,
            correlation_id=metadata.correlation_id,
            scope=scope,
        )
        if self._update_execution_context is not None:
            self._update_execution_context(execution_context, subscriber, metadata)
        return execution_context

    async def _check_result(self, context: DispatchContext, result: Result) -> Result:
        """Stamp the routing details onto ``result`` and apply the handling policy."""
        if context.metadata is not None:
            result.subject = context.metadata.subject
            result.action = context.metadata.action
        result.subscriber = context.subscriber

        result = await self._policy.apply(context, result)

        logger.info(
            "Event processed",
            extra={
                "status": result.status.value,
                "subject": result.subject,
                "action": result.action,
                "reason": result.reason,
                "result_handling": (
                    result.result_handling.value if result.result_handling else None
                ),
            },
        )
        return result

    # -------------------------------------------------------------------------
    # Batches
    # -------------------------------------------------------------------------

    async def receive_batch(self, events: Iterable[Any], *, attempt: int = 0) -> BatchResult:
        """Process a batch of events delivered together.

        Without multiple-message support events are processed strictly in
        delivery order and processing stops at the first raised error, so the
        transport can redeliver from that event. With it, events run
        concurrently and every error is collected.
        """
        events = list(events)
        batch = BatchResult(started_at=datetime.now(timezone.utc))

        if self.multiple_messages_supported:
            outcomes = await asyncio.gather(
                *(self.receive(event, attempt=attempt) for event in events),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, EventSubscriberUnhandledError):
                    batch.errors.append(outcome)
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    batch.results.append(outcome)
        else:
            for index, event in enumerate(events):
                try:
                    batch.results.append(await self.receive(event, attempt=attempt))
                except EventSubscriberUnhandledError as e:
                    batch.errors.append(e)
                    batch.unprocessed = len(events) - index - 1
                    break

        batch.completed_at = datetime.now(timezone.utc)
        logger.info("Batch complete", extra=batch.to_dict())
        return batch
