"""Error taxonomy for reliable-amqp."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .outcome import HandlerFailure

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


class AmqpError(Exception):
    """Root exception for every reliable-amqp failure.

    ``context`` holds structured details suitable for logging.
    """

    def __init__(self, message: str, context: Mapping[str, Any] | None = None) -> None:
        self.context: dict[str, Any] = dict(context or {})
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        if not self.context:
            return f"amqp error: {message}"
        details = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
        return f"amqp error: {message} ({details})"


class AmqpConfigError(AmqpError):
    """Raised when configuration is invalid.

    Carries every violation found: ``{field: [messages]}``.
    """

    def __init__(self, errors: dict[str, list[str]]) -> None:
        self.errors = errors
        super().__init__("Invalid AMQP configuration", {"errors": errors})


class AmqpConnectionError(AmqpError):
    """Raised when the client cannot connect, open its channel or start consumers."""

    def __init__(self, reason: str, target: str) -> None:
        self.reason = reason
        self.target = target
        super().__init__(
            f"Failed to connect to AMQP server: {reason}", {"target": target}
        )


class AmqpUninitializedError(AmqpError):
    """Raised when the client is used before ``start()`` or after ``stop()``."""

    def __init__(self) -> None:
        super().__init__("AMQP client is not initialized")


class AmqpPublisherError(AmqpError):
    """Raised when the transport refuses a publish (buffer full or rejected)."""

    def __init__(self, exchange: str, topic: str, payload: Any) -> None:
        self.exchange = exchange
        self.topic = topic
        self.payload = payload
        super().__init__(
            "Failed to publish message",
            {"exchange": exchange, "topic": topic, "payload": payload},
        )


class AmqpSerializationError(AmqpError):
    """Raised when a payload cannot be encoded to or decoded from JSON."""


class AmqpShutdownError(AmqpError):
    """Raised when closing the channel or the connection failed.

    Both closes are always attempted; ``errors`` lists every failure.
    """

    def __init__(self, errors: Sequence[BaseException]) -> None:
        self.errors = list(errors)
        super().__init__(
            f"Failed to close {len(self.errors)} AMQP resource(s). "
            f"First error: {self.errors[0] if self.errors else 'unknown'}"
        )


# ── Handler signals ──────────────────────────────────────────────────


class AmqpConsumerError(AmqpError):
    """Base class for errors raised by message handlers.

    ``failure`` is the value the consumer inspects to settle the delivery.
    """

    def __init__(self, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__("Failed to consume message", {"error": cause})
        if cause is not None:
            self.__cause__ = cause

    @property
    def failure(self) -> HandlerFailure:
        return HandlerFailure.fatal(self.cause)


class AmqpRetriableError(AmqpConsumerError):
    """Requeue the message while its delivery count is below ``retry_limit``.

    The default limit of ``0`` never requeues.
    """

    def __init__(
        self, cause: BaseException | None = None, retry_limit: int = 0
    ) -> None:
        self._failure = HandlerFailure.retriable(cause, retry_limit)
        self.retry_limit = retry_limit
        super().__init__(cause)

    @property
    def failure(self) -> HandlerFailure:
        return self._failure


class AmqpFatalError(AmqpConsumerError):
    """Never requeue the message."""
