"""In-memory connection and channel implementing the transport ports."""

from __future__ import annotations

import itertools
from typing import TYPE_CHECKING, Any

from .broker import InMemoryDelivery

if TYPE_CHECKING:
    from collections.abc import Mapping

    from ..ports import Delivery, DeliveryCallback
    from .broker import InMemoryBroker

_channel_ids = itertools.count(1)


class InMemoryChannel:
    """Channel on an :class:`InMemoryBroker`.

    Tracks unsettled deliveries; closing the channel returns them to their
    queues, as a broker does when a channel goes away.
    """

    def __init__(self, broker: InMemoryBroker) -> None:
        self._broker = broker
        self._id = next(_channel_ids)
        self._unsettled: dict[int, InMemoryDelivery] = {}
        self.is_closed = False

    def _ensure_open(self) -> None:
        if self.is_closed:
            raise RuntimeError("channel is closed")

    async def assert_queue(
        self,
        queue: str,
        *,
        durable: bool = True,
        arguments: Mapping[str, Any] | None = None,
    ) -> None:
        self._ensure_open()
        self._broker.declare_queue(queue, durable=durable, arguments=arguments)

    async def assert_exchange(
        self, exchange: str, exchange_type: str, *, durable: bool = True
    ) -> None:
        self._ensure_open()
        self._broker.declare_exchange(exchange, exchange_type)

    async def bind_queue(self, queue: str, exchange: str, routing_key: str) -> None:
        self._ensure_open()
        self._broker.bind(queue, exchange, routing_key)

    async def consume(self, queue: str, on_delivery: DeliveryCallback) -> None:
        self._ensure_open()

        async def deliver(delivery: Delivery | None) -> None:
            if isinstance(delivery, InMemoryDelivery):
                self._unsettled[delivery.delivery_tag] = delivery
            await on_delivery(delivery)

        self._broker.add_consumer(queue, self._id, deliver)

    async def ack(self, delivery: Delivery) -> None:
        self._broker.settle(self._take(delivery), ack=True, requeue=False)

    async def nack(self, delivery: Delivery, *, requeue: bool) -> None:
        self._broker.settle(self._take(delivery), ack=False, requeue=requeue)

    def _take(self, delivery: Delivery) -> InMemoryDelivery:
        self._ensure_open()
        if not isinstance(delivery, InMemoryDelivery):
            raise TypeError("delivery does not belong to an in-memory broker")
        taken = self._unsettled.pop(delivery.delivery_tag, None)
        if taken is None:
            raise RuntimeError(f"unknown delivery tag {delivery.delivery_tag}")
        return taken

    async def publish(
        self,
        exchange: str,
        routing_key: str,
        body: bytes,
        *,
        headers: Mapping[str, Any] | None = None,
    ) -> bool:
        self._ensure_open()
        return self._broker.route(exchange, routing_key, body, headers)

    async def close(self) -> None:
        if self.is_closed:
            return
        self.is_closed = True
        self._broker.remove_consumers(self._id)
        for delivery in self._unsettled.values():
            self._broker.return_to_queue(delivery)
        self._unsettled.clear()


class InMemoryConnection:
    """Connection handed out by :meth:`InMemoryBroker.connect`."""

    def __init__(self, broker: InMemoryBroker, target: str) -> None:
        self._broker = broker
        self.target = target
        self.channels: list[InMemoryChannel] = []
        self.is_closed = False

    async def create_channel(self) -> InMemoryChannel:
        if self.is_closed:
            raise RuntimeError("connection is closed")
        channel = InMemoryChannel(self._broker)
        self.channels.append(channel)
        return channel

    async def close(self) -> None:
        for channel in self.channels:
            await channel.close()
        self.is_closed = True
