"""Tests for the FastAPI push-subscription surface."""

import pytest
from fastapi.testclient import TestClient

from conftest import cloud_event
from eventhost.events.errors import NotFoundError
from eventhost.events.result import Result
from eventhost.events.subscriber import EventSubscriber, subscribe
from eventhost.main import create_app


@subscribe("order.*")
class OrderSubscriber(EventSubscriber):
    async def receive(self, event, context):
        if event.action == "missing":
            raise NotFoundError("Order 7 not found.")
        return Result.success()


@pytest.fixture
def client(make_host):
    return TestClient(create_app(make_host(OrderSubscriber)))


class TestHttpSurface:
    """Tests for the HTTP endpoints."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_dapr_subscribe(self, client):
        response = client.get("/dapr/subscribe")

        assert response.json() == [
            {"pubsubname": "eventpubsub", "topic": "domain-events", "route": "/events"}
        ]

    def test_success(self, client):
        response = client.post("/events", json=cloud_event("order.created", "created"))

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "SUCCESS"
        assert body["result"]["status"] == "success"

    def test_not_subscribed_acknowledged(self, client):
        response = client.post("/events", json=cloud_event("invoice.paid"))

        body = response.json()
        assert body["status"] == "SUCCESS"
        assert body["result"]["status"] == "not_subscribed"

    def test_raised_result_requests_retry(self, client, audit_writer):
        response = client.post("/events", json=cloud_event("order.created", "missing"))

        body = response.json()
        assert body["status"] == "RETRY"
        assert body["result"]["status"] == "data_not_found"
        assert body["result"]["reason"] == "Order 7 not found."
        assert len(audit_writer.audits) == 1

    def test_delivery_attempt_header(self, client, settings, audit_writer):
        settings.EVENTS_MAX_ATTEMPTS = 2

        response = client.post(
            "/events",
            json=cloud_event("order.created", "missing"),
            headers={"X-Delivery-Attempt": "3"},
        )

        body = response.json()
        assert body["status"] == "SUCCESS"
        assert body["result"]["status"] == "poison_max_attempts"
        assert audit_writer.audits[0][0].attempt == 3

    def test_dapr_subscribe_uses_host_settings(self, make_host, settings):
        settings.DAPR_PUBSUB_NAME = "orders-pubsub"
        settings.DAPR_TOPIC_NAME = "orders"
        client = TestClient(create_app(make_host(OrderSubscriber)))

        response = client.get("/dapr/subscribe")

        assert response.json() == [
            {"pubsubname": "orders-pubsub", "topic": "orders", "route": "/events"}
        ]
