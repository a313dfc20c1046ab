"""Enumerations and event value models shared across the dispatch engine."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class SubscriberStatus(str, Enum):
    """Terminal outcome of a single dispatch attempt."""

    SUCCESS = "success"
    DATA_NOT_FOUND = "data_not_found"
    INVALID_EVENT_DATA = "invalid_event_data"
    INVALID_DATA = "invalid_data"
    NOT_SUBSCRIBED = "not_subscribed"
    UNHANDLED_EXCEPTION = "unhandled_exception"
    EXCEPTION_CONTINUE = "exception_continue"
    POISON_SKIPPED = "poison_skipped"
    POISON_MISMATCH = "poison_mismatch"
    POISON_MAX_ATTEMPTS = "poison_max_attempts"


class ResultHandling(str, Enum):
    """What the host does with a non-successful result."""

    CONTINUE_SILENT = "continue_silent"
    CONTINUE_WITH_LOGGING = "continue_with_logging"
    CONTINUE_WITH_AUDIT = "continue_with_audit"
    THROW_EXCEPTION = "throw_exception"


class RunAsUser(str, Enum):
    """Identity a subscriber executes under."""

    ORIGINATING = "originating"
    SYSTEM = "system"


class UnhandledExceptionHandling(str, Enum):
    """Subscriber behaviour for exceptions outside the known signals."""

    THROW_EXCEPTION = "throw_exception"
    CONTINUE = "continue"


class PoisonMessageAction(str, Enum):
    """Verdict of the redelivery tracker for an inbound event."""

    NOT_POISON = "not_poison"
    POISON_RETRY = "poison_retry"
    POISON_SKIP = "poison_skip"
    POISON_MISMATCH = "poison_mismatch"


class EventMetadata(BaseModel):
    """Routing and identity attributes extracted from an inbound event.

    Produced once per dispatch by the event converter and never mutated.
    """

    model_config = ConfigDict(frozen=True)

    event_id: UUID | None = Field(default=None, description="Unique event identifier")
    tenant_id: UUID | None = Field(default=None, description="Owning tenant")
    subject: str | None = Field(default=None, description="Routing subject")
    action: str | None = Field(default=None, description="Action qualifying the subject")
    key: Any = Field(default=None, description="Entity key the event relates to")
    correlation_id: str | None = Field(default=None, description="Correlation identifier")
    partition_key: str | None = Field(default=None, description="Transport partition key")
    username: str | None = Field(default=None, description="Originating username")
    user_id: str | None = Field(default=None, description="Originating user identifier")
    timestamp: datetime | None = Field(default=None, description="Event timestamp")
    source: str | None = Field(default=None, description="Event source URI")
    extras: dict[str, Any] = Field(
        default_factory=dict,
        description="Transport-specific attributes",
    )


class EventData(BaseModel):
    """The event as handed to a subscriber: metadata plus the converted value."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    metadata: EventMetadata
    value: Any = None

    @property
    def has_value(self) -> bool:
        return self.value is not None

    @property
    def subject(self) -> str | None:
        return self.metadata.subject

    @property
    def action(self) -> str | None:
        return self.metadata.action
