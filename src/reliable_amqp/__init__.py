"""Guaranteed-delivery publish/consume over AMQP with a guarded client."""

from __future__ import annotations

from .binding import ConsumerBinding
from .client import AmqpClient, ClientState
from .config import AmqpConfig, load_config
from .consumer import Consumer, ConsumerState
from .exceptions import (
    AmqpConfigError,
    AmqpConnectionError,
    AmqpConsumerError,
    AmqpError,
    AmqpFatalError,
    AmqpPublisherError,
    AmqpRetriableError,
    AmqpSerializationError,
    AmqpShutdownError,
    AmqpUninitializedError,
)
from .outcome import FailureKind, HandlerFailure, Settlement
from .serialization import PayloadSerializer
from .validation import (
    PayloadValidator,
    PredicateValidator,
    PydanticValidator,
    ValidationResult,
)

__all__ = [
    "AmqpClient",
    "AmqpConfig",
    "AmqpConfigError",
    "AmqpConnectionError",
    "AmqpConsumerError",
    "AmqpError",
    "AmqpFatalError",
    "AmqpPublisherError",
    "AmqpRetriableError",
    "AmqpSerializationError",
    "AmqpShutdownError",
    "AmqpUninitializedError",
    "ClientState",
    "Consumer",
    "ConsumerBinding",
    "ConsumerState",
    "FailureKind",
    "HandlerFailure",
    "PayloadSerializer",
    "PayloadValidator",
    "PredicateValidator",
    "PydanticValidator",
    "Settlement",
    "ValidationResult",
    "load_config",
]
