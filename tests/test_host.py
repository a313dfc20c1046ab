"""Tests for the event subscriber host dispatch lifecycle.

These tests drive the host end to end with in-memory subscribers, a spy
audit writer and CloudEvents-shaped mappings; no transport is required.
"""

import asyncio
from uuid import uuid4

import pytest
from pydantic import BaseModel

from conftest import cloud_event
from eventhost.events.context import EventScope
from eventhost.events.errors import (
    BusinessError,
    DataValidationError,
    EventSubscriberUnhandledError,
    InvalidEventDataError,
    NotFoundError,
)
from eventhost.events.host import EventSubscriberHost
from eventhost.events.poison import PoisonCheck
from eventhost.events.result import Result
from eventhost.events.subscriber import EventSubscriber, subscribe
from eventhost.events.types import (
    PoisonMessageAction,
    ResultHandling,
    RunAsUser,
    SubscriberStatus,
    UnhandledExceptionHandling,
)


class Order(BaseModel):
    id: int
    total: float


@subscribe("order.*")
class OrderSubscriber(EventSubscriber):
    """Records every event and execution context it receives."""

    value_type = Order
    received: list = []

    async def receive(self, event, context):
        OrderSubscriber.received.append((self, event, context))
        return Result.success()


@subscribe("audit.*")
class NoValueSubscriber(EventSubscriber):
    async def receive(self, event, context):
        assert event.value is None
        return Result.success()


@subscribe("customer.*")
class RaisingSubscriber(EventSubscriber):
    """Raises the exception configured on the class."""

    error: BaseException | None = None

    async def receive(self, event, context):
        raise RaisingSubscriber.error


@subscribe("invoice.*")
class ContinuingSubscriber(EventSubscriber):
    unhandled_exception_handling = UnhandledExceptionHandling.CONTINUE

    async def receive(self, event, context):
        raise RuntimeError("downstream unavailable")


@subscribe("shipment.*")
class SystemSubscriber(EventSubscriber):
    run_as_user = RunAsUser.SYSTEM
    contexts: list = []

    async def receive(self, event, context):
        SystemSubscriber.contexts.append(context)
        return Result.success()


@subscribe("payment.*")
class NullValueSubscriber(EventSubscriber):
    value_type = Order
    consider_null_value_as_invalid_data = False

    async def receive(self, event, context):
        return Result.success() if event.value is None else Result.invalid_data()


@subscribe("refund.*")
class BadReturnSubscriber(EventSubscriber):
    async def receive(self, event, context):
        return "done"


@pytest.fixture(autouse=True)
def reset_subscribers():
    OrderSubscriber.received = []
    SystemSubscriber.contexts = []
    RaisingSubscriber.error = None
    yield


ORDER_DATA = {"id": 42, "total": 9.5}


# ============================================================================
# Routing Tests
# ============================================================================

class TestRouting:
    """Tests for subscriber resolution during dispatch."""

    @pytest.mark.asyncio
    async def test_wildcard_routes_any_action(self, make_host):
        """order.created with template order.* reaches the subscriber for any action."""
        host = make_host(OrderSubscriber)

        first = await host.receive(cloud_event("order.created", data=ORDER_DATA))
        second = await host.receive(cloud_event("order.created", "shipped", data=ORDER_DATA))

        assert first.status == SubscriberStatus.SUCCESS
        assert second.status == SubscriberStatus.SUCCESS
        assert len(OrderSubscriber.received) == 2
        _, event, _ = OrderSubscriber.received[0]
        assert event.value == Order(id=42, total=9.5)
        assert event.subject == "order.created"

    @pytest.mark.asyncio
    async def test_unmatched_subject_never_invokes_subscriber(self, make_host, audit_writer):
        host = make_host(OrderSubscriber)

        result = await host.receive(cloud_event("invoice.paid", data=ORDER_DATA))

        assert result.status == SubscriberStatus.NOT_SUBSCRIBED
        assert result.result_handling == ResultHandling.CONTINUE_SILENT
        assert result.subject == "invoice.paid"
        assert OrderSubscriber.received == []
        assert audit_writer.audits == []

    @pytest.mark.asyncio
    async def test_subject_falls_back_to_type(self, make_host):
        host = make_host(OrderSubscriber)
        event = cloud_event(None, type="order.created", data=ORDER_DATA)

        result = await host.receive(event)

        assert result.status == SubscriberStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_result_stamped_with_subscriber(self, make_host):
        host = make_host(OrderSubscriber)
        result = await host.receive(cloud_event("order.created", "created", data=ORDER_DATA))

        assert result.action == "created"
        assert result.subscriber_name == "OrderSubscriber"


# ============================================================================
# Event Data Tests
# ============================================================================

class TestEventData:
    """Tests for metadata and value conversion failures."""

    @pytest.mark.asyncio
    async def test_missing_subject_is_invalid_event_data(self, make_host, settings):
        settings.EVENTS_INVALID_EVENT_DATA_HANDLING = ResultHandling.CONTINUE_WITH_AUDIT
        host = make_host(OrderSubscriber)
        event = cloud_event(None, data=ORDER_DATA)
        del event["type"]

        result = await host.receive(event)

        assert result.status == SubscriberStatus.INVALID_EVENT_DATA
        assert result.reason == "EventData is invalid; Subject is required."

    @pytest.mark.asyncio
    async def test_unconvertible_event_is_invalid_event_data(self, make_host, audit_writer):
        host = make_host(OrderSubscriber)

        with pytest.raises(EventSubscriberUnhandledError) as exc_info:
            await host.receive(["not", "a", "mapping"])

        assert exc_info.value.result.status == SubscriberStatus.INVALID_EVENT_DATA
        assert audit_writer.statuses == ["invalid_event_data"]

    @pytest.mark.asyncio
    async def test_invalid_value_is_invalid_event_data(self, make_host, settings):
        settings.EVENTS_INVALID_EVENT_DATA_HANDLING = ResultHandling.CONTINUE_WITH_LOGGING
        host = make_host(OrderSubscriber)

        result = await host.receive(cloud_event("order.created", data={"id": "abc"}))

        assert result.status == SubscriberStatus.INVALID_EVENT_DATA
        assert OrderSubscriber.received == []

    @pytest.mark.asyncio
    async def test_null_value_rejected_by_default(self, make_host, settings):
        settings.EVENTS_INVALID_EVENT_DATA_HANDLING = ResultHandling.CONTINUE_SILENT
        host = make_host(OrderSubscriber)

        result = await host.receive(cloud_event("order.created"))

        assert result.status == SubscriberStatus.INVALID_EVENT_DATA
        assert "Value must not be null" in result.reason
        assert OrderSubscriber.received == []

    @pytest.mark.asyncio
    async def test_null_value_allowed_when_configured(self, make_host):
        host = make_host(NullValueSubscriber)
        result = await host.receive(cloud_event("payment.captured"))
        assert result.status == SubscriberStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_subscriber_without_value_type_gets_no_value(self, make_host):
        host = make_host(NoValueSubscriber)
        result = await host.receive(cloud_event("audit.logged", data={"ignored": True}))
        assert result.status == SubscriberStatus.SUCCESS


# ============================================================================
# Classification Tests
# ============================================================================

class TestClassification:
    """Subscriber signals are classified into statuses."""

    @pytest.mark.asyncio
    async def test_not_found_raises_after_single_audit(self, make_host, audit_writer):
        """A not-found signal with the default throw policy audits once then raises."""
        RaisingSubscriber.error = NotFoundError()
        host = make_host(RaisingSubscriber)

        with pytest.raises(EventSubscriberUnhandledError) as exc_info:
            await host.receive(cloud_event("customer.updated"))

        assert exc_info.value.result.status == SubscriberStatus.DATA_NOT_FOUND
        assert exc_info.value.result.reason == "Data not found."
        assert exc_info.value.result.result_handling == ResultHandling.THROW_EXCEPTION
        assert len(audit_writer.audits) == 1
        assert isinstance(exc_info.value.__cause__, NotFoundError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error,status",
        [
            (InvalidEventDataError("bad"), SubscriberStatus.INVALID_EVENT_DATA),
            (DataValidationError(messages=["Name is required."]), SubscriberStatus.INVALID_DATA),
            (BusinessError("Closed account."), SubscriberStatus.INVALID_DATA),
            (NotFoundError(), SubscriberStatus.DATA_NOT_FOUND),
            (RuntimeError("boom"), SubscriberStatus.UNHANDLED_EXCEPTION),
        ],
    )
    async def test_signal_classification(self, make_host, error, status):
        RaisingSubscriber.error = error
        host = make_host(RaisingSubscriber)

        with pytest.raises(EventSubscriberUnhandledError) as exc_info:
            await host.receive(cloud_event("customer.updated"))

        assert exc_info.value.result.status == status
        assert exc_info.value.result.exception is error

    @pytest.mark.asyncio
    async def test_continue_subscriber_yields_exception_continue(self, make_host, audit_writer):
        host = make_host(ContinuingSubscriber)

        result = await host.receive(cloud_event("invoice.paid"))

        assert result.status == SubscriberStatus.EXCEPTION_CONTINUE
        assert result.result_handling == ResultHandling.CONTINUE_WITH_AUDIT
        assert audit_writer.statuses == ["exception_continue"]

    @pytest.mark.asyncio
    async def test_non_result_return_is_unhandled(self, make_host):
        host = make_host(BadReturnSubscriber)

        with pytest.raises(EventSubscriberUnhandledError) as exc_info:
            await host.receive(cloud_event("refund.issued"))

        assert exc_info.value.result.status == SubscriberStatus.UNHANDLED_EXCEPTION
        assert isinstance(exc_info.value.result.exception, TypeError)

    @pytest.mark.asyncio
    async def test_nested_unhandled_error_propagates_unchanged(self, make_host, audit_writer):
        inner = EventSubscriberUnhandledError(Result.data_not_found())
        RaisingSubscriber.error = inner
        host = make_host(RaisingSubscriber)

        with pytest.raises(EventSubscriberUnhandledError) as exc_info:
            await host.receive(cloud_event("customer.updated"))

        assert exc_info.value is inner
        assert audit_writer.audits == []


# ============================================================================
# Poison and Max Attempts Tests
# ============================================================================

class StaticPoisonTracker:
    def __init__(self, check: PoisonCheck) -> None:
        self._check = check
        self.calls = 0

    async def check(self, context):
        self.calls += 1
        return self._check


class TestPoison:
    """Tests for redelivery handling."""

    @pytest.mark.asyncio
    async def test_max_attempts_exceeded_skips_event(self, make_host, settings, audit_writer):
        """A failing event past max attempts becomes an audited skip."""
        settings.EVENTS_MAX_ATTEMPTS = 3
        RaisingSubscriber.error = NotFoundError()
        host = make_host(RaisingSubscriber)

        result = await host.receive(cloud_event("customer.updated"), attempt=4)

        assert result.status == SubscriberStatus.POISON_MAX_ATTEMPTS
        assert result.result_handling == ResultHandling.CONTINUE_WITH_AUDIT
        assert audit_writer.statuses == ["poison_max_attempts"]

    @pytest.mark.asyncio
    async def test_at_max_attempts_still_raises(self, make_host, settings):
        settings.EVENTS_MAX_ATTEMPTS = 3
        RaisingSubscriber.error = NotFoundError()
        host = make_host(RaisingSubscriber)

        with pytest.raises(EventSubscriberUnhandledError):
            await host.receive(cloud_event("customer.updated"), attempt=3)

    @pytest.mark.asyncio
    async def test_tracker_skip_bypasses_subscriber(self, make_host, audit_writer):
        tracker = StaticPoisonTracker(PoisonCheck(PoisonMessageAction.POISON_SKIP, 5))
        host = make_host(OrderSubscriber, poison_tracker=tracker)

        result = await host.receive(cloud_event("order.created", "created", data=ORDER_DATA))

        assert result.status == SubscriberStatus.POISON_SKIPPED
        assert result.subject == "order.created"
        assert OrderSubscriber.received == []
        assert audit_writer.statuses == ["poison_skipped"]

    @pytest.mark.asyncio
    async def test_tracker_mismatch(self, make_host):
        tracker = StaticPoisonTracker(PoisonCheck(PoisonMessageAction.POISON_MISMATCH))
        host = make_host(OrderSubscriber, poison_tracker=tracker)

        result = await host.receive(cloud_event("order.created", data=ORDER_DATA))

        assert result.status == SubscriberStatus.POISON_MISMATCH
        assert OrderSubscriber.received == []

    @pytest.mark.asyncio
    async def test_tracker_attempts_drive_max_attempts(self, make_host, settings):
        settings.EVENTS_MAX_ATTEMPTS = 2
        RaisingSubscriber.error = RuntimeError("boom")
        tracker = StaticPoisonTracker(PoisonCheck(PoisonMessageAction.POISON_RETRY, 3))
        host = make_host(RaisingSubscriber, poison_tracker=tracker)

        result = await host.receive(cloud_event("customer.updated"))

        assert result.status == SubscriberStatus.POISON_MAX_ATTEMPTS
        assert tracker.calls == 1


# ============================================================================
# Execution Context and Scope Tests
# ============================================================================

class TrackingScope(EventScope):
    """Scope that records every instance and its release."""

    instances: list = []

    async def __aenter__(self):
        await super().__aenter__()
        self.released = False
        TrackingScope.instances.append(self)

        async def release():
            self.released = True

        self.push_async_callback(release)
        return self


class TestExecutionContext:
    """Each event runs in its own scope and context."""

    @pytest.mark.asyncio
    async def test_fresh_scope_and_context_per_event(self, make_host):
        """Processing the same event twice shares no subscriber, scope or context."""
        TrackingScope.instances = []
        host = make_host(OrderSubscriber, scope_factory=TrackingScope)
        event = cloud_event("order.created", data=ORDER_DATA, username="alice")

        first = await host.receive(event)
        second = await host.receive(event)

        assert first.status == second.status == SubscriberStatus.SUCCESS
        (sub1, _, ctx1), (sub2, _, ctx2) = OrderSubscriber.received
        assert sub1 is not sub2
        assert ctx1 is not ctx2
        assert ctx1.scope is not ctx2.scope
        assert all(scope.released and scope.closed for scope in TrackingScope.instances)

    @pytest.mark.asyncio
    async def test_originating_identity(self, make_host):
        tenant_id = uuid4()
        host = make_host(OrderSubscriber)

        await host.receive(
            cloud_event(
                "order.created",
                data=ORDER_DATA,
                username="alice",
                userid="u-1",
                tenantid=str(tenant_id),
                correlationid="corr-1",
            )
        )

        _, _, context = OrderSubscriber.received[0]
        assert context.username == "alice"
        assert context.user_id == "u-1"
        assert context.tenant_id == tenant_id
        assert context.correlation_id == "corr-1"

    @pytest.mark.asyncio
    async def test_missing_username_falls_back_to_system(self, make_host):
        host = make_host(OrderSubscriber)
        await host.receive(cloud_event("order.created", data=ORDER_DATA))

        _, _, context = OrderSubscriber.received[0]
        assert context.username == "system"

    @pytest.mark.asyncio
    async def test_system_subscriber_ignores_originating_user(self, make_host):
        host = make_host(SystemSubscriber)
        await host.receive(cloud_event("shipment.sent", username="alice"))

        assert SystemSubscriber.contexts[0].username == "system"

    @pytest.mark.asyncio
    async def test_update_execution_context_hook(self, make_host):
        def add_role(context, subscriber, metadata):
            context.username = f"{metadata.username}@{type(subscriber).__name__}"

        host = make_host(OrderSubscriber, update_execution_context=add_role)
        await host.receive(cloud_event("order.created", data=ORDER_DATA, username="bob"))

        _, _, context = OrderSubscriber.received[0]
        assert context.username == "bob@OrderSubscriber"

    @pytest.mark.asyncio
    async def test_scope_released_when_subscriber_raises(self, make_host):
        TrackingScope.instances = []
        RaisingSubscriber.error = RuntimeError("boom")
        host = make_host(RaisingSubscriber, scope_factory=TrackingScope)

        with pytest.raises(EventSubscriberUnhandledError):
            await host.receive(cloud_event("customer.updated"))

        assert TrackingScope.instances[0].released


# ============================================================================
# Cancellation Tests
# ============================================================================

@subscribe("slow.*")
class SlowSubscriber(EventSubscriber):
    unhandled_exception_handling = UnhandledExceptionHandling.CONTINUE
    started: asyncio.Event | None = None

    async def receive(self, event, context):
        SlowSubscriber.started.set()
        await asyncio.sleep(60)
        return Result.success()


class TestCancellation:
    """Cancelled dispatches are classified and their scope released."""

    @pytest.mark.asyncio
    async def test_cancelled_event_is_audited_and_scope_released(self, make_host, audit_writer):
        TrackingScope.instances = []
        SlowSubscriber.started = asyncio.Event()
        host = make_host(SlowSubscriber, scope_factory=TrackingScope)

        task = asyncio.create_task(host.receive(cloud_event("slow.job")))
        await SlowSubscriber.started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert audit_writer.statuses == ["unhandled_exception"]
        assert TrackingScope.instances[0].released

    @pytest.mark.asyncio
    async def test_cancel_during_shutdown_is_not_classified(self, make_host, audit_writer):
        TrackingScope.instances = []
        SlowSubscriber.started = asyncio.Event()
        host = make_host(SlowSubscriber, scope_factory=TrackingScope)

        task = asyncio.create_task(host.receive(cloud_event("slow.job")))
        await SlowSubscriber.started.wait()
        host.shutdown()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert host.is_shutting_down
        assert audit_writer.audits == []
        assert TrackingScope.instances[0].released


# ============================================================================
# Batch Tests
# ============================================================================

class TestReceiveBatch:
    """Tests for EventSubscriberHost.receive_batch."""

    @pytest.mark.asyncio
    async def test_sequential_batch_stops_at_first_error(self, make_host):
        RaisingSubscriber.error = RuntimeError("boom")
        host = make_host(OrderSubscriber, RaisingSubscriber)
        events = [
            cloud_event("order.created", data=ORDER_DATA),
            cloud_event("customer.updated"),
            cloud_event("order.updated", data=ORDER_DATA),
        ]

        batch = await host.receive_batch(events)

        assert [r.status for r in batch.results] == [SubscriberStatus.SUCCESS]
        assert len(batch.errors) == 1
        assert batch.unprocessed == 1
        assert batch.failed
        assert len(OrderSubscriber.received) == 1

    @pytest.mark.asyncio
    async def test_sequential_batch_preserves_order(self, make_host):
        host = make_host(OrderSubscriber)
        events = [
            cloud_event("order.created", "first", data=ORDER_DATA),
            cloud_event("order.created", "second", data=ORDER_DATA),
        ]

        batch = await host.receive_batch(events)

        assert [r.action for r in batch.results] == ["first", "second"]
        assert not batch.failed
        d = batch.to_dict()
        assert d["processed_count"] == 2
        assert d["failed_count"] == 0

    @pytest.mark.asyncio
    async def test_concurrent_batch_collects_every_error(self, make_host, settings):
        settings.EVENTS_MULTIPLE_MESSAGES = True
        RaisingSubscriber.error = RuntimeError("boom")
        host = make_host(OrderSubscriber, RaisingSubscriber)
        events = [
            cloud_event("customer.updated"),
            cloud_event("order.created", data=ORDER_DATA),
            cloud_event("customer.deleted"),
        ]

        batch = await host.receive_batch(events)

        assert len(batch.results) == 1
        assert len(batch.errors) == 2
        assert batch.unprocessed == 0


class TestCreate:
    """Tests for EventSubscriberHost.create."""

    def test_create_builds_registry_from_settings(self, settings):
        host = EventSubscriberHost.create([OrderSubscriber], settings=settings)

        assert host.registry.subscriber_types() == [OrderSubscriber]
        assert host.settings is settings
        assert not host.multiple_messages_supported
