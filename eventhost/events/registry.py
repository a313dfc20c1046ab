"""Subscriber registry.

Holds the subscriber descriptors known at startup and resolves the single
subscriber for a subject/action pair.

Rules:
- Every entry must be a concrete EventSubscriber subclass
- Every subscriber type must carry a routing annotation (see ``subscribe``)
- No two descriptors may match the same subject and action
- Read-only after construction, safe to share between concurrent dispatches
"""

import inspect
import logging
from typing import Iterable

from eventhost.events.errors import AmbiguousRoutingError, SubscriberConfigurationError
from eventhost.events.matcher import match, templates_overlap
from eventhost.events.subscriber import (
    EventSubscriber,
    SubscriberDescriptor,
    get_subscription,
)

logger = logging.getLogger(__name__)


def _actions_overlap(first: frozenset[str], second: frozenset[str]) -> bool:
    if not first or not second:
        return True
    return bool(first & second)


def _describe(descriptor: SubscriberDescriptor) -> str:
    actions = ", ".join(sorted(descriptor.actions)) or "any"
    return (
        f"{descriptor.handler_type.__name__} "
        f"('{descriptor.subject_template}' [{actions}])"
    )


class SubscriberRegistry:
    """Immutable set of subscriber descriptors with subject/action resolution.

    Args:
        subscribers: Subscriber types annotated with ``subscribe`` and/or
            explicit ``SubscriberDescriptor`` entries
        wildcard: Subject template wildcard token
        separator: Subject path separator
        trailing_wildcard_matches_many: Whether a trailing wildcard absorbs
            more than one subject segment

    Raises:
        SubscriberConfigurationError: Invalid or missing registrations
        AmbiguousRoutingError: Two descriptors can match the same event
    """

    def __init__(
        self,
        subscribers: Iterable[type | SubscriberDescriptor],
        wildcard: str = "*",
        separator: str = ".",
        trailing_wildcard_matches_many: bool = True,
    ) -> None:
        self.wildcard = wildcard
        self.separator = separator
        self.trailing_wildcard_matches_many = trailing_wildcard_matches_many

        descriptors = tuple(self._to_descriptor(entry) for entry in subscribers)
        if not descriptors:
            raise SubscriberConfigurationError(
                "At least one EventSubscriber must be registered to enable execution."
            )

        self._descriptors = descriptors
        self._validate_unambiguous()

        for descriptor in self._descriptors:
            logger.info(
                "Subscriber registered",
                extra={
                    "subscriber": descriptor.handler_type.__name__,
                    "subject_template": descriptor.subject_template,
                    "actions": sorted(descriptor.actions),
                },
            )

    @classmethod
    def from_settings(
        cls, subscribers: Iterable[type | SubscriberDescriptor], settings
    ) -> "SubscriberRegistry":
        """Build a registry using the subject routing configuration in ``settings``."""
        return cls(
            subscribers,
            wildcard=settings.EVENTS_SUBJECT_WILDCARD,
            separator=settings.EVENTS_SUBJECT_SEPARATOR,
            trailing_wildcard_matches_many=settings.EVENTS_TRAILING_WILDCARD_MATCHES_MANY,
        )

    @staticmethod
    def _validate_handler_type(handler_type: object) -> None:
        if not (
            inspect.isclass(handler_type)
            and issubclass(handler_type, EventSubscriber)
            and not inspect.isabstract(handler_type)
        ):
            raise SubscriberConfigurationError(
                f"Type '{getattr(handler_type, '__name__', handler_type)}' must be a "
                "concrete EventSubscriber subclass."
            )

    def _to_descriptor(self, entry: type | SubscriberDescriptor) -> SubscriberDescriptor:
        if isinstance(entry, SubscriberDescriptor):
            self._validate_handler_type(entry.handler_type)
            if not entry.subject_template:
                raise SubscriberConfigurationError(
                    f"Subscriber '{entry.handler_type.__name__}' has an empty subject template."
                )
            return entry

        self._validate_handler_type(entry)
        subscription = get_subscription(entry)
        if subscription is None:
            raise SubscriberConfigurationError(
                f"Type '{entry.__name__}' implements EventSubscriber but is not "
                "decorated with the required subscribe annotation."
            )

        subject_template, actions = subscription
        return SubscriberDescriptor.create(subject_template, actions, entry)

    def _validate_unambiguous(self) -> None:
        for index, first in enumerate(self._descriptors):
            for second in self._descriptors[index + 1:]:
                if not _actions_overlap(first.actions, second.actions):
                    continue
                if templates_overlap(
                    self.wildcard,
                    self.separator,
                    first.subject_template,
                    second.subject_template,
                    trailing_wildcard_matches_many=self.trailing_wildcard_matches_many,
                ):
                    raise AmbiguousRoutingError(
                        f"Subscribers {_describe(first)} and {_describe(second)} can "
                        "both match the same subject and action; there must be only "
                        "a single subscriber.",
                        subscribers=(first.handler_type, second.handler_type),
                    )

    @property
    def descriptors(self) -> tuple[SubscriberDescriptor, ...]:
        return self._descriptors

    def subscriber_types(self) -> list[type]:
        """Return the registered subscriber types in registration order."""
        return [d.handler_type for d in self._descriptors]

    def resolve(self, subject: str, action: str | None) -> type | None:
        """Resolve the subscriber type for a subject and action.

        Returns:
            The single matching subscriber type, or None when nothing matches

        Raises:
            AmbiguousRoutingError: More than one subscriber matches
        """
        matched: list[type] = []
        for descriptor in self._descriptors:
            if not descriptor.accepts_action(action):
                continue
            if match(
                self.wildcard,
                self.separator,
                descriptor.subject_template,
                subject,
                trailing_wildcard_matches_many=self.trailing_wildcard_matches_many,
            ):
                matched.append(descriptor.handler_type)

        if not matched:
            return None
        if len(matched) > 1:
            raise AmbiguousRoutingError(
                f"There are {len(matched)} EventSubscriber instances subscribing to "
                f"Subject '{subject}' and Action '{action}'; there must be only a "
                "single subscriber.",
                subscribers=matched,
            )
        return matched[0]

    def __len__(self) -> int:
        return len(self._descriptors)
