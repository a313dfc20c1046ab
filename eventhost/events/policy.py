"""Failure handling policy.

Maps a classified result to its handling directive and carries it out:

    ResultHandling.CONTINUE_SILENT        nothing
    ResultHandling.CONTINUE_WITH_LOGGING  warning log line
    ResultHandling.CONTINUE_WITH_AUDIT    audit write
    ResultHandling.THROW_EXCEPTION        audit write, then EventSubscriberUnhandledError

The directive is taken from the result itself, then the subscriber's
override, then the host default for the status.
"""

import logging
from typing import Any

from eventhost.events.audit import AuditWriter
from eventhost.events.context import DispatchContext
from eventhost.events.errors import EventSubscriberUnhandledError
from eventhost.events.result import Result
from eventhost.events.types import (
    ResultHandling,
    SubscriberStatus,
    UnhandledExceptionHandling,
)

logger = logging.getLogger(__name__)

# Statuses that count as a failed attempt for max-attempt skipping
FAILURE_STATUSES = frozenset(
    {
        SubscriberStatus.DATA_NOT_FOUND,
        SubscriberStatus.INVALID_EVENT_DATA,
        SubscriberStatus.INVALID_DATA,
        SubscriberStatus.UNHANDLED_EXCEPTION,
    }
)

_POISON_STATUSES = frozenset(
    {
        SubscriberStatus.POISON_SKIPPED,
        SubscriberStatus.POISON_MISMATCH,
        SubscriberStatus.POISON_MAX_ATTEMPTS,
    }
)


class ResultHandlingPolicy:
    """Resolves and applies the handling directive for dispatch results.

    Args:
        settings: Host settings providing the per-status defaults
        audit_writer: Sink for audited results
    """

    def __init__(self, settings: Any, audit_writer: AuditWriter) -> None:
        self._settings = settings
        self._audit_writer = audit_writer

    def max_attempts_for(self, subscriber: Any) -> int | None:
        """Effective max attempts: the subscriber's when positive, else the host's."""
        subscriber_max = getattr(subscriber, "max_attempts", None)
        if subscriber_max is not None and subscriber_max > 0:
            return subscriber_max
        host_max = self._settings.EVENTS_MAX_ATTEMPTS
        if host_max is not None and host_max > 0:
            return host_max
        return None

    def check_max_attempts(self, context: DispatchContext, result: Result) -> Result:
        """Replace a failed result with POISON_MAX_ATTEMPTS once attempts are exhausted."""
        if result.status not in FAILURE_STATUSES:
            return result

        max_attempts = self.max_attempts_for(result.subscriber)
        if max_attempts is None or context.attempt <= max_attempts:
            return result

        logger.info(
            "Max attempts exceeded, skipping event",
            extra={
                "status": result.status.value,
                "subject": result.subject,
                "action": result.action,
                "attempt": context.attempt,
                "max_attempts": max_attempts,
            },
        )
        return Result.poison_max_attempts(result, context.attempt)

    def resolve_handling(self, result: Result) -> ResultHandling | None:
        """Determine the handling directive for ``result``; None for success."""
        status = result.status
        if status == SubscriberStatus.SUCCESS:
            return None

        if result.result_handling is not None:
            return result.result_handling

        subscriber = result.subscriber
        settings = self._settings

        if status == SubscriberStatus.NOT_SUBSCRIBED:
            return settings.EVENTS_NOT_SUBSCRIBED_HANDLING

        if status == SubscriberStatus.DATA_NOT_FOUND:
            return (
                getattr(subscriber, "data_not_found_handling", None)
                or settings.EVENTS_DATA_NOT_FOUND_HANDLING
            )

        if status == SubscriberStatus.INVALID_EVENT_DATA:
            return (
                getattr(subscriber, "invalid_event_data_handling", None)
                or settings.EVENTS_INVALID_EVENT_DATA_HANDLING
            )

        if status == SubscriberStatus.INVALID_DATA:
            return (
                getattr(subscriber, "invalid_data_handling", None)
                or settings.EVENTS_INVALID_DATA_HANDLING
            )

        if status == SubscriberStatus.UNHANDLED_EXCEPTION:
            if (
                subscriber is not None
                and subscriber.unhandled_exception_handling
                == UnhandledExceptionHandling.CONTINUE
            ):
                return ResultHandling.CONTINUE_WITH_AUDIT
            return ResultHandling.THROW_EXCEPTION

        if status == SubscriberStatus.EXCEPTION_CONTINUE or status in _POISON_STATUSES:
            return ResultHandling.CONTINUE_WITH_AUDIT

        return ResultHandling.CONTINUE_SILENT

    async def apply(self, context: DispatchContext, result: Result) -> Result:
        """Apply the handling directive to ``result``.

        Returns:
            Result: The result, possibly replaced by a max-attempts result

        Raises:
            EventSubscriberUnhandledError: Directive is THROW_EXCEPTION
        """
        result = self.check_max_attempts(context, result)

        handling = self.resolve_handling(result)
        if handling is None:
            return result

        if result.result_handling is None:
            result.result_handling = handling

        if handling == ResultHandling.CONTINUE_WITH_LOGGING:
            logger.warning(str(result), extra=_log_extra(context, result))

        elif handling == ResultHandling.CONTINUE_WITH_AUDIT:
            await self._audit_writer.write_audit(context, result)

        elif handling == ResultHandling.THROW_EXCEPTION:
            await self._audit_writer.write_audit(context, result)
            logger.error(
                "Event processing failed, raising to transport",
                extra=_log_extra(context, result),
            )
            raise EventSubscriberUnhandledError(result) from result.exception

        else:
            logger.debug("Result continued silently", extra=_log_extra(context, result))

        return result


def _log_extra(context: DispatchContext, result: Result) -> dict[str, Any]:
    return {
        "status": result.status.value,
        "subject": result.subject,
        "action": result.action,
        "reason": result.reason,
        "subscriber": result.subscriber_name,
        "attempt": context.attempt,
    }
