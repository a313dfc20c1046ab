"""Environment configuration for the event subscriber host."""

import getpass
import os
from functools import lru_cache

from dotenv import load_dotenv

from eventhost.events.types import ResultHandling

load_dotenv()

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in _TRUE_VALUES


def _get_optional_int(name: str) -> int | None:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    return int(value)


def _default_system_username() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "system"


class Settings:
    """Host settings loaded from environment variables.

    Handling values use the ``ResultHandling`` values, e.g. ``continue_with_audit``.
    """

    def __init__(self) -> None:
        # Subject routing
        self.EVENTS_SUBJECT_WILDCARD: str = os.getenv("EVENTS_SUBJECT_WILDCARD", "*")
        self.EVENTS_SUBJECT_SEPARATOR: str = os.getenv("EVENTS_SUBJECT_SEPARATOR", ".")
        self.EVENTS_TRAILING_WILDCARD_MATCHES_MANY: bool = _get_bool(
            "EVENTS_TRAILING_WILDCARD_MATCHES_MANY", True
        )

        # Redelivery and batching
        self.EVENTS_MAX_ATTEMPTS: int | None = _get_optional_int("EVENTS_MAX_ATTEMPTS")
        self.EVENTS_MULTIPLE_MESSAGES: bool = _get_bool("EVENTS_MULTIPLE_MESSAGES", False)

        # Identity used when a subscriber runs as the system
        self.EVENTS_SYSTEM_USERNAME: str = (
            os.getenv("EVENTS_SYSTEM_USERNAME") or _default_system_username()
        )

        # Host-wide result handling defaults
        self.EVENTS_NOT_SUBSCRIBED_HANDLING: ResultHandling = ResultHandling(
            os.getenv("EVENTS_NOT_SUBSCRIBED_HANDLING", ResultHandling.CONTINUE_SILENT.value)
        )
        self.EVENTS_DATA_NOT_FOUND_HANDLING: ResultHandling = ResultHandling(
            os.getenv("EVENTS_DATA_NOT_FOUND_HANDLING", ResultHandling.THROW_EXCEPTION.value)
        )
        self.EVENTS_INVALID_EVENT_DATA_HANDLING: ResultHandling = ResultHandling(
            os.getenv(
                "EVENTS_INVALID_EVENT_DATA_HANDLING", ResultHandling.THROW_EXCEPTION.value
            )
        )
        self.EVENTS_INVALID_DATA_HANDLING: ResultHandling = ResultHandling(
            os.getenv("EVENTS_INVALID_DATA_HANDLING", ResultHandling.THROW_EXCEPTION.value)
        )

        # Dapr push subscription
        self.DAPR_PUBSUB_NAME: str = os.getenv("DAPR_PUBSUB_NAME", "eventpubsub")
        self.DAPR_TOPIC_NAME: str = os.getenv("DAPR_TOPIC_NAME", "domain-events")

        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    def validate(self) -> None:
        """Validate settings that cannot be checked while parsing."""
        if not self.EVENTS_SUBJECT_WILDCARD:
            raise ValueError("EVENTS_SUBJECT_WILDCARD must not be empty")
        if not self.EVENTS_SUBJECT_SEPARATOR:
            raise ValueError("EVENTS_SUBJECT_SEPARATOR must not be empty")
        if self.EVENTS_SUBJECT_WILDCARD == self.EVENTS_SUBJECT_SEPARATOR:
            raise ValueError(
                "EVENTS_SUBJECT_WILDCARD and EVENTS_SUBJECT_SEPARATOR must differ"
            )
        if self.EVENTS_MAX_ATTEMPTS is not None and self.EVENTS_MAX_ATTEMPTS <= 0:
            raise ValueError("EVENTS_MAX_ATTEMPTS must be a positive integer")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    settings.validate()
    return settings
