"""Audit sink contract for unsuccessful dispatches.

The host calls ``AuditWriter.write_audit`` for results handled with
``CONTINUE_WITH_AUDIT`` or ``THROW_EXCEPTION``. Storage is left to the
application: subclass ``AuditWriterBase`` and persist the ``EventAuditRecord``
it builds (e.g. as a ``table=True`` SQLModel indexed by subject, action and
status). ``LoggerAuditWriter`` is the default and only logs.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable
from uuid import UUID

from sqlmodel import Field, SQLModel

from eventhost.events.context import DispatchContext
from eventhost.events.result import Result

logger = logging.getLogger(__name__)


@runtime_checkable
class AuditWriter(Protocol):
    """Receives the final result of a dispatch together with its context."""

    async def write_audit(self, context: DispatchContext, result: Result) -> None:
        ...


class EventAuditRecord(SQLModel):
    """Schema for an audit record of an unsuccessful dispatch.

    Indexed columns take effect on a ``table=True`` subclass.
    """

    subject: str | None = Field(default=None, index=True)
    action: str | None = Field(default=None, index=True)
    status: str = Field(index=True)
    result_handling: str | None = None
    reason: str | None = None
    exception_type: str | None = None
    exception_message: str | None = None
    subscriber: str | None = None
    event_id: UUID | None = Field(default=None, index=True)
    tenant_id: UUID | None = None
    correlation_id: str | None = None
    partition_key: str | None = None
    attempt: int = 0
    audited_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def create_audit_record(context: DispatchContext, result: Result) -> EventAuditRecord:
    """Build the audit record for ``result``."""
    metadata = context.metadata
    exception = result.exception
    return EventAuditRecord(
        subject=result.subject,
        action=result.action,
        status=result.status.value,
        result_handling=result.result_handling.value if result.result_handling else None,
        reason=(result.reason or "")[:2000] or None,
        exception_type=type(exception).__name__ if exception is not None else None,
        exception_message=str(exception)[:2000] if exception is not None else None,
        subscriber=result.subscriber_name,
        event_id=metadata.event_id if metadata else None,
        tenant_id=metadata.tenant_id if metadata else None,
        correlation_id=metadata.correlation_id if metadata else None,
        partition_key=metadata.partition_key if metadata else None,
        attempt=context.attempt,
    )


def format_audit(record: EventAuditRecord) -> str:
    """Render an audit record as a single log message."""
    return (
        f"Subscriber '{record.subscriber or 'n/a'}' unsuccessful; "
        f"Status: {record.status}, Subject: {record.subject}, "
        f"Action: {record.action}, Reason: {record.reason}"
    )


class AuditWriterBase(ABC):
    """Audit writer that persists ``EventAuditRecord`` instances.

    Subclasses implement ``write_record``. Every record is also logged so a
    failure stays visible when the store itself is unavailable.
    """

    async def write_audit(self, context: DispatchContext, result: Result) -> None:
        record = create_audit_record(context, result)
        try:
            await self.write_record(record)
        finally:
            logger.warning(format_audit(record), extra=_log_extra(record))

    @abstractmethod
    async def write_record(self, record: EventAuditRecord) -> None:
        """Persist the audit record.

        Args:
            record: The audit record to store
        """
        pass


class LoggerAuditWriter:
    """Audit writer that only logs; the host default."""

    def __init__(self, audit_logger: logging.Logger | None = None) -> None:
        self._logger = audit_logger or logger

    async def write_audit(self, context: DispatchContext, result: Result) -> None:
        record = create_audit_record(context, result)
        self._logger.warning(format_audit(record), extra=_log_extra(record))


def _log_extra(record: EventAuditRecord) -> dict:
    return {
        "audit_status": record.status,
        "audit_subject": record.subject,
        "audit_action": record.action,
        "audit_reason": record.reason,
        "audit_subscriber": record.subscriber,
        "event_id": str(record.event_id) if record.event_id else None,
        "attempt": record.attempt,
    }
