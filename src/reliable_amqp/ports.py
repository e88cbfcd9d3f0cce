"""Transport ports implemented by the aio-pika and in-memory adapters."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping


@runtime_checkable
class Delivery(Protocol):
    """
    A message handed over by the transport.

    Owned by the transport; consumers read it and never mutate it.
    """

    @property
    def body(self) -> bytes: ...

    @property
    def headers(self) -> Mapping[str, Any]: ...


DeliveryCallback = Callable[[Delivery | None], Awaitable[None]]


@runtime_checkable
class AmqpChannel(Protocol):
    """
    Port for the channel-level primitives of an AMQP transport.

    Infrastructure adapters (aio-pika, in-memory) provide implementations.
    """

    async def assert_queue(
        self,
        queue: str,
        *,
        durable: bool = True,
        arguments: Mapping[str, Any] | None = None,
    ) -> None: ...

    async def assert_exchange(
        self, exchange: str, exchange_type: str, *, durable: bool = True
    ) -> None: ...

    async def bind_queue(self, queue: str, exchange: str, routing_key: str) -> None: ...

    async def consume(
        self,
        queue: str,
        on_delivery: DeliveryCallback,
    ) -> None:
        """
        Start delivering messages from *queue* to *on_delivery*.

        ``None`` is delivered when the broker cancels the consumer.
        """
        ...

    async def ack(self, delivery: Delivery) -> None: ...

    async def nack(self, delivery: Delivery, *, requeue: bool) -> None: ...

    async def publish(
        self,
        exchange: str,
        routing_key: str,
        body: bytes,
        *,
        headers: Mapping[str, Any] | None = None,
    ) -> bool:
        """
        Send *body*; ``False`` means the transport refused it (buffer full or
        rejected by the broker).
        """
        ...

    async def close(self) -> None: ...


@runtime_checkable
class AmqpConnection(Protocol):
    """Port for an open transport connection."""

    @property
    def is_closed(self) -> bool: ...

    async def create_channel(self) -> AmqpChannel: ...

    async def close(self) -> None: ...


class Connector(Protocol):
    """Opens a connection to *target* (a validated connection string)."""

    def __call__(self, target: str) -> Awaitable[AmqpConnection]: ...
