"""Consumer: binds one queue to a validator and a handler and settles deliveries."""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Generic, TypeVar

from .exceptions import AmqpSerializationError
from .outcome import Settlement, classify_failure, delivery_count, settle_failure
from .serialization import PayloadSerializer
from .validation import as_validator

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .binding import ConsumerBinding
    from .ports import AmqpChannel, Delivery
    from .validation import ValidatorLike

logger = logging.getLogger(__name__)

T = TypeVar("T")

QUEUE_ARGUMENTS = {"x-queue-type": "quorum"}
EXCHANGE_TYPE = "topic"


class ConsumerState(Enum):
    UNBOUND = "unbound"
    BOUND = "bound"
    CONSUMING = "consuming"


class Consumer(Generic[T]):
    """Subscribes a handler to one queue/exchange/topic binding.

    Every delivery ends in exactly one settlement:

    - undecodable or invalid payload: rejected, the handler is never called
    - handler succeeded: acknowledged
    - handler raised a retriable failure: requeued while the delivery count
      is below its ``retry_limit``, rejected afterwards
    - any other handler failure: rejected

    The channel passed to :meth:`start` is borrowed and never closed here.
    """

    def __init__(
        self,
        binding: ConsumerBinding,
        handler: Callable[[T], Awaitable[None]],
        *,
        validator: ValidatorLike = None,
        serializer: PayloadSerializer | None = None,
    ) -> None:
        self._binding = binding
        self._handler = handler
        self._validator = as_validator(validator)
        self._serializer = serializer or PayloadSerializer()
        self._state = ConsumerState.UNBOUND

    @property
    def binding(self) -> ConsumerBinding:
        return self._binding

    @property
    def state(self) -> ConsumerState:
        return self._state

    async def start(self, channel: AmqpChannel) -> None:
        """Declare the queue, exchange and binding, then start consuming."""
        binding = self._binding
        await channel.assert_queue(
            binding.queue, durable=True, arguments=dict(QUEUE_ARGUMENTS)
        )
        await channel.assert_exchange(binding.exchange, EXCHANGE_TYPE, durable=True)
        await channel.bind_queue(binding.queue, binding.exchange, binding.topic)
        self._state = ConsumerState.BOUND

        async def on_delivery(delivery: Delivery | None) -> None:
            await self.handle_delivery(channel, delivery)

        await channel.consume(binding.queue, on_delivery)
        self._state = ConsumerState.CONSUMING
        logger.info("Consuming %s", binding)

    async def handle_delivery(
        self, channel: AmqpChannel, delivery: Delivery | None
    ) -> None:
        """Decide and apply the settlement for one delivery."""
        if delivery is None:
            logger.debug("Consumer for %s cancelled by the broker", self._binding)
            return
        settlement = await self.decide(delivery)
        try:
            if settlement is Settlement.ACK:
                await channel.ack(delivery)
            else:
                await channel.nack(
                    delivery, requeue=settlement is Settlement.REQUEUE
                )
        except Exception:
            logger.exception(
                "Failed to %s message from %s", settlement.value, self._binding.queue
            )

    async def decide(self, delivery: Delivery) -> Settlement:
        """Run decode, validation and the handler; return the settlement."""
        queue = self._binding.queue
        try:
            payload = self._serializer.deserialize(delivery.body)
        except AmqpSerializationError as e:
            logger.warning("Rejecting undecodable message from %s: %s", queue, e)
            return Settlement.REJECT

        try:
            result = self._validator.validate(payload)
        except Exception:
            logger.exception("Validator failed for message from %s", queue)
            return Settlement.REJECT
        if not result.is_valid:
            logger.warning(
                "Rejecting invalid message from %s: %s", queue, result.errors
            )
            return Settlement.REJECT

        try:
            await self._handler(result.value)
        except Exception as e:
            failure = classify_failure(e)
            count = delivery_count(delivery.headers)
            settlement = settle_failure(failure, count)
            logger.warning(
                "Handler for %s failed (%s, delivery_count=%d, retry_limit=%d): "
                "%s -> %s",
                queue,
                failure.kind.value,
                count,
                failure.retry_limit,
                e,
                settlement.value,
            )
            return settlement
        return Settlement.ACK

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._binding!r}, state={self._state.value})"

