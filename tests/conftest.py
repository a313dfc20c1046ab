"""Shared fixtures for event subscriber host tests."""

from typing import Any
from uuid import uuid4

import pytest

from eventhost.config import Settings
from eventhost.events.context import DispatchContext
from eventhost.events.host import EventSubscriberHost
from eventhost.events.registry import SubscriberRegistry
from eventhost.events.result import Result
from eventhost.events.types import ResultHandling


class SpyAuditWriter:
    """Audit writer that keeps every audited result in memory."""

    def __init__(self) -> None:
        self.audits: list[tuple[DispatchContext, Result]] = []

    async def write_audit(self, context: DispatchContext, result: Result) -> None:
        self.audits.append((context, result))

    @property
    def statuses(self) -> list[str]:
        return [result.status.value for _, result in self.audits]


def cloud_event(
    subject: str | None,
    action: str | None = None,
    data: Any = None,
    **attributes: Any,
) -> dict[str, Any]:
    """Build a CloudEvents-shaped mapping."""
    event: dict[str, Any] = {
        "specversion": "1.0",
        "id": str(uuid4()),
        "source": "/tests",
        "type": "test.event",
    }
    if subject is not None:
        event["subject"] = subject
    if action is not None:
        event["action"] = action
    if data is not None:
        event["data"] = data
    event.update(attributes)
    return event


@pytest.fixture
def settings() -> Settings:
    """Settings with deterministic defaults regardless of the environment."""
    s = Settings()
    s.EVENTS_SUBJECT_WILDCARD = "*"
    s.EVENTS_SUBJECT_SEPARATOR = "."
    s.EVENTS_TRAILING_WILDCARD_MATCHES_MANY = True
    s.EVENTS_MAX_ATTEMPTS = None
    s.EVENTS_MULTIPLE_MESSAGES = False
    s.EVENTS_SYSTEM_USERNAME = "system"
    s.EVENTS_NOT_SUBSCRIBED_HANDLING = ResultHandling.CONTINUE_SILENT
    s.EVENTS_DATA_NOT_FOUND_HANDLING = ResultHandling.THROW_EXCEPTION
    s.EVENTS_INVALID_EVENT_DATA_HANDLING = ResultHandling.THROW_EXCEPTION
    s.EVENTS_INVALID_DATA_HANDLING = ResultHandling.THROW_EXCEPTION
    s.DAPR_PUBSUB_NAME = "eventpubsub"
    s.DAPR_TOPIC_NAME = "domain-events"
    return s


@pytest.fixture
def audit_writer() -> SpyAuditWriter:
    return SpyAuditWriter()


@pytest.fixture
def make_host(settings, audit_writer):
    """Factory building a host over the given subscriber types."""

    def _make_host(*subscribers: type, **kwargs: Any) -> EventSubscriberHost:
        registry = SubscriberRegistry.from_settings(subscribers, settings)
        kwargs.setdefault("audit_writer", audit_writer)
        return EventSubscriberHost(registry, settings=settings, **kwargs)

    return _make_host
