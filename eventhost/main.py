"""FastAPI push-subscription surface for the event subscriber host.

Dapr delivers each CloudEvent to ``POST /events`` and reads the returned
status: ``SUCCESS`` acknowledges the event, ``RETRY`` asks for redelivery.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Body, FastAPI, Header

from eventhost.events.errors import EventSubscriberUnhandledError
from eventhost.events.host import EventSubscriberHost

logger = logging.getLogger(__name__)

EVENTS_ROUTE = "/events"


def create_app(host: EventSubscriberHost) -> FastAPI:
    """Create the HTTP application bound to ``host``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Mark the host as shutting down when the server stops."""
        yield
        host.shutdown()

    app = FastAPI(
        title="Event Subscriber Host",
        description="Push subscription endpoint dispatching domain events to subscribers",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.host = host

    @app.get("/health")
    def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.get("/dapr/subscribe")
    def dapr_subscribe() -> list[dict[str, str]]:
        """Programmatic subscription read by the Dapr sidecar."""
        settings = host.settings
        return [
            {
                "pubsubname": settings.DAPR_PUBSUB_NAME,
                "topic": settings.DAPR_TOPIC_NAME,
                "route": EVENTS_ROUTE,
            }
        ]

    @app.post(EVENTS_ROUTE)
    async def receive_event(
        event: dict[str, Any] = Body(...),
        x_delivery_attempt: int | None = Header(default=None),
    ) -> dict[str, Any]:
        """Dispatch one CloudEvent."""
        try:
            result = await host.receive(event, attempt=x_delivery_attempt or 0)
        except EventSubscriberUnhandledError as e:
            logger.warning(
                "Event returned for redelivery",
                extra={"status": e.result.status.value, "subject": e.result.subject},
            )
            return {"status": "RETRY", "result": e.result.to_dict()}

        return {"status": "SUCCESS", "result": result.to_dict()}

    return app
