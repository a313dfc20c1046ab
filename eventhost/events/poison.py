"""Redelivery tracking interface.

Tracking is owned by the transport integration; the host only asks for a
verdict before dispatching and uses the attempt count it reports.
"""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from eventhost.events.context import DispatchContext
from eventhost.events.types import PoisonMessageAction


@dataclass(frozen=True)
class PoisonCheck:
    """Verdict for an inbound event.

    Attributes:
        action: What the host should do with the event
        attempts: Attempts made so far, including the current one
    """

    action: PoisonMessageAction = PoisonMessageAction.NOT_POISON
    attempts: int = 0


@runtime_checkable
class PoisonMessageTracker(Protocol):
    """Decides whether an inbound event is a known poison message."""

    async def check(self, context: DispatchContext) -> PoisonCheck:
        ...
