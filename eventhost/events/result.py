"""Result of a single event dispatch.

Every dispatch produces exactly one ``Result``. Its status is fixed at
construction; the handling directive may be assigned once, either by the
subscriber (as an override) or later by the policy layer.
"""

from typing import Any

from eventhost.events.errors import BusinessError, DataValidationError
from eventhost.events.types import ResultHandling, SubscriberStatus


class Result:
    """Outcome of a dispatch attempt.

    Attributes:
        status: Terminal status, read-only
        reason: Human readable reason text
        exception: Exception that caused the status, if any
        result_handling: Effective handling directive, assignable once
        subject: Event subject, stamped by the host
        action: Event action, stamped by the host
        subscriber: Subscriber instance that ran, if any
    """

    def __init__(
        self,
        status: SubscriberStatus,
        reason: str | None = None,
        exception: BaseException | None = None,
        result_handling: ResultHandling | None = None,
        subject: str | None = None,
        action: str | None = None,
        subscriber: Any = None,
    ) -> None:
        self._status = SubscriberStatus(status)
        self._result_handling = (
            ResultHandling(result_handling) if result_handling is not None else None
        )
        self.reason = reason
        self.exception = exception
        self.subject = subject
        self.action = action
        self.subscriber = subscriber

    @property
    def status(self) -> SubscriberStatus:
        return self._status

    @property
    def result_handling(self) -> ResultHandling | None:
        return self._result_handling

    @result_handling.setter
    def result_handling(self, value: ResultHandling) -> None:
        if self._result_handling is not None:
            raise AttributeError(
                f"Result handling is already set to '{self._result_handling.value}'."
            )
        self._result_handling = ResultHandling(value)

    @property
    def is_success(self) -> bool:
        return self._status == SubscriberStatus.SUCCESS

    @property
    def subscriber_name(self) -> str | None:
        if self.subscriber is None:
            return None
        return type(self.subscriber).__name__

    # -------------------------------------------------------------------------
    # Constructors
    # -------------------------------------------------------------------------

    @classmethod
    def success(cls) -> "Result":
        return cls(SubscriberStatus.SUCCESS, reason="Success.")

    @classmethod
    def data_not_found(
        cls, reason: str | None = None, handling: ResultHandling | None = None
    ) -> "Result":
        return cls(
            SubscriberStatus.DATA_NOT_FOUND,
            reason=reason or "Data not found.",
            result_handling=handling,
        )

    @classmethod
    def invalid_data(
        cls, reason: str | None = None, handling: ResultHandling | None = None
    ) -> "Result":
        return cls(
            SubscriberStatus.INVALID_DATA,
            reason=reason or "A data validation error occurred.",
            result_handling=handling,
        )

    @classmethod
    def from_validation_error(
        cls, exception: DataValidationError, handling: ResultHandling | None = None
    ) -> "Result":
        reason = "; ".join(exception.messages) if exception.messages else str(exception)
        return cls(
            SubscriberStatus.INVALID_DATA,
            reason=reason,
            exception=exception,
            result_handling=handling,
        )

    @classmethod
    def from_business_error(
        cls, exception: BusinessError, handling: ResultHandling | None = None
    ) -> "Result":
        return cls(
            SubscriberStatus.INVALID_DATA,
            reason=str(exception),
            exception=exception,
            result_handling=handling,
        )

    @classmethod
    def invalid_event_data(
        cls, exception: BaseException | None = None, reason: str | None = None
    ) -> "Result":
        if reason is None:
            reason = (
                f"EventData is invalid: {exception}"
                if exception is not None
                else "EventData is invalid."
            )
        return cls(SubscriberStatus.INVALID_EVENT_DATA, reason=reason, exception=exception)

    @classmethod
    def not_subscribed(cls, reason: str | None = None) -> "Result":
        return cls(
            SubscriberStatus.NOT_SUBSCRIBED,
            reason=reason or "An EventSubscriber was not found.",
        )

    @classmethod
    def exception_continue(
        cls, exception: BaseException, reason: str | None = None
    ) -> "Result":
        return cls(
            SubscriberStatus.EXCEPTION_CONTINUE,
            reason=reason
            or (
                "An unhandled exception was encountered and ignored as the "
                f"subscriber is configured to continue: {exception}"
            ),
            exception=exception,
        )

    @classmethod
    def unhandled_exception(
        cls, exception: BaseException, reason: str | None = None
    ) -> "Result":
        return cls(
            SubscriberStatus.UNHANDLED_EXCEPTION,
            reason=reason or str(exception) or type(exception).__name__,
            exception=exception,
        )

    @classmethod
    def poison_skipped(
        cls,
        subject: str | None,
        action: str | None,
        reason: str | None = None,
        handling: ResultHandling = ResultHandling.CONTINUE_WITH_AUDIT,
    ) -> "Result":
        return cls(
            SubscriberStatus.POISON_SKIPPED,
            reason=reason
            or (
                "EventData was identified as Poison and was marked as SkipMessage; "
                "this event is skipped (i.e. not processed)."
            ),
            result_handling=handling,
            subject=subject,
            action=action,
        )

    @classmethod
    def poison_mismatch(
        cls,
        subject: str | None,
        action: str | None,
        reason: str | None = None,
        handling: ResultHandling = ResultHandling.CONTINUE_WITH_AUDIT,
    ) -> "Result":
        return cls(
            SubscriberStatus.POISON_MISMATCH,
            reason=reason
            or (
                "EventData does not match the expected poison message and it is "
                "uncertain whether it has been successfully processed."
            ),
            result_handling=handling,
            subject=subject,
            action=action,
        )

    @classmethod
    def poison_max_attempts(
        cls, prior: "Result", attempts: int, reason: str | None = None
    ) -> "Result":
        return cls(
            SubscriberStatus.POISON_MAX_ATTEMPTS,
            reason=reason
            or (
                "EventData was identified as Poison and has been configured to "
                f"automatically SkipMessage after {attempts} attempts; this event "
                f"is skipped (i.e. not processed). Last status: {prior.status.value}; "
                f"last reason: {prior.reason}"
            ),
            exception=prior.exception,
            result_handling=ResultHandling.CONTINUE_WITH_AUDIT,
            subject=prior.subject,
            action=prior.action,
            subscriber=prior.subscriber,
        )

    # -------------------------------------------------------------------------
    # Output
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging and responses."""
        return {
            "status": self._status.value,
            "subject": self.subject,
            "action": self.action,
            "reason": self.reason,
            "result_handling": (
                self._result_handling.value if self._result_handling else None
            ),
            "subscriber": self.subscriber_name,
            "exception_type": (
                type(self.exception).__name__ if self.exception is not None else None
            ),
        }

    def __str__(self) -> str:
        lines = [f"Status: {self._status.value}"]
        if self.subject:
            lines.append(f"Subject: {self.subject}")
        if self.action:
            lines.append(f"Action: {self.action}")
        lines.append(f"Reason: {self.reason}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"Result(status={self._status.value!r}, subject={self.subject!r}, "
            f"action={self.action!r}, reason={self.reason!r})"
        )
