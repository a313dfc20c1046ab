"""Event subscriber dispatch engine.

Components:
- types.py: Status and handling enums, event metadata and value models
- errors.py: Configuration errors, handler signals and the host sentinel
- result.py: Dispatch result and status taxonomy
- matcher.py: Subject template matching
- subscriber.py: Subscriber base class and routing annotation
- registry.py: Subscriber registry and ambiguity validation
- context.py: Per-event scope and execution context
- converter.py: Event converter protocol and CloudEvents converter
- audit.py: Audit record schema and writers
- poison.py: Redelivery tracker protocol
- policy.py: Failure handling policy
- host.py: Event subscriber host and batch dispatch
"""

from eventhost.events.types import (
    EventData,
    EventMetadata,
    PoisonMessageAction,
    ResultHandling,
    RunAsUser,
    SubscriberStatus,
    UnhandledExceptionHandling,
)
from eventhost.events.errors import (
    AmbiguousRoutingError,
    BusinessError,
    DataValidationError,
    EventSubscriberError,
    EventSubscriberUnhandledError,
    InvalidEventDataError,
    NotFoundError,
    SubscriberConfigurationError,
)
from eventhost.events.result import Result
from eventhost.events.matcher import match, templates_overlap
from eventhost.events.subscriber import EventSubscriber, SubscriberDescriptor, subscribe
from eventhost.events.registry import SubscriberRegistry
from eventhost.events.context import DispatchContext, EventScope, ExecutionContext
from eventhost.events.converter import CloudEventConverter, EventConverter
from eventhost.events.audit import (
    AuditWriter,
    AuditWriterBase,
    EventAuditRecord,
    LoggerAuditWriter,
)
from eventhost.events.poison import PoisonCheck, PoisonMessageTracker
from eventhost.events.policy import ResultHandlingPolicy
from eventhost.events.host import BatchResult, EventSubscriberHost

__all__ = [
    # Types
    "EventData",
    "EventMetadata",
    "PoisonMessageAction",
    "ResultHandling",
    "RunAsUser",
    "SubscriberStatus",
    "UnhandledExceptionHandling",
    # Errors
    "AmbiguousRoutingError",
    "BusinessError",
    "DataValidationError",
    "EventSubscriberError",
    "EventSubscriberUnhandledError",
    "InvalidEventDataError",
    "NotFoundError",
    "SubscriberConfigurationError",
    # Results
    "Result",
    # Routing
    "match",
    "templates_overlap",
    "EventSubscriber",
    "SubscriberDescriptor",
    "subscribe",
    "SubscriberRegistry",
    # Context
    "DispatchContext",
    "EventScope",
    "ExecutionContext",
    # Collaborators
    "CloudEventConverter",
    "EventConverter",
    "AuditWriter",
    "AuditWriterBase",
    "EventAuditRecord",
    "LoggerAuditWriter",
    "PoisonCheck",
    "PoisonMessageTracker",
    # Host
    "ResultHandlingPolicy",
    "BatchResult",
    "EventSubscriberHost",
]
