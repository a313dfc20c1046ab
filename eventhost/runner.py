"""File replay runner.

Entry points for dispatching recorded events outside a transport:
- load_subscribers(): Resolve a ``module:attribute`` subscriber list
- read_events(): Read CloudEvents from a JSON-lines file
- dispatch_file(): Dispatch a file of events through a host
- run_dispatch_file(): Synchronous wrapper used by the CLI
"""

import asyncio
import importlib
import inspect
import json
import logging
from pathlib import Path
from typing import Any

from eventhost.config import Settings, get_settings
from eventhost.events.audit import LoggerAuditWriter
from eventhost.events.host import BatchResult, EventSubscriberHost

logger = logging.getLogger(__name__)


def load_subscribers(reference: str) -> list[type]:
    """Load subscriber types from a ``module:attribute`` reference.

    The attribute may be a single subscriber type or an iterable of them.

    Raises:
        ValueError: The reference is malformed
        ImportError: The module cannot be imported
        AttributeError: The module has no such attribute
    """
    module_name, _, attribute = reference.partition(":")
    if not module_name or not attribute:
        raise ValueError(
            f"Subscriber reference '{reference}' must have the form 'module:attribute'."
        )

    target: Any = importlib.import_module(module_name)
    for part in attribute.split("."):
        target = getattr(target, part)

    if inspect.isclass(target):
        return [target]
    return list(target)


def read_events(path: str | Path) -> list[dict[str, Any]]:
    """Read one JSON event per non-blank line."""
    events: list[dict[str, Any]] = []
    with open(path, encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError as e:
                raise ValueError(f"{path}:{line_number}: invalid JSON: {e.msg}") from e
    return events


def build_host(subscribers: list[type], settings: Settings | None = None) -> EventSubscriberHost:
    """Build a host that audits to the log."""
    settings = settings or get_settings()
    return EventSubscriberHost.create(
        subscribers,
        settings=settings,
        audit_writer=LoggerAuditWriter(),
    )


async def dispatch_file(
    path: str | Path,
    host: EventSubscriberHost,
    attempt: int = 0,
) -> BatchResult:
    """Dispatch every event in ``path`` as one batch."""
    events = read_events(path)
    logger.info(
        "Dispatching events from file",
        extra={"path": str(path), "event_count": len(events), "attempt": attempt},
    )
    return await host.receive_batch(events, attempt=attempt)


def run_dispatch_file(
    path: str | Path,
    subscribers_reference: str,
    attempt: int = 0,
) -> BatchResult:
    """Load subscribers, build a host and dispatch ``path``.

    Example:
        >>> from eventhost.runner import run_dispatch_file
        >>> result = run_dispatch_file("events.jsonl", "myapp.subscribers:SUBSCRIBERS")
        >>> print(f"Processed: {len(result.results)}")
    """
    host = build_host(load_subscribers(subscribers_reference))
    return asyncio.run(dispatch_file(path, host, attempt=attempt))


def configure_host_logging(level: int = logging.INFO) -> None:
    """Configure logging for host processes.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    logging.getLogger("eventhost").setLevel(level)
