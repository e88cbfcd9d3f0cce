"""aio-pika channel adapter with per-queue dispatch tasks."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, cast

import aio_pika
from aio_pika import DeliveryMode, ExchangeType
from aio_pika.exceptions import DeliveryError, PublishError
from pamqp.commands import Basic

from ..serialization import CONTENT_TYPE

if TYPE_CHECKING:
    from collections.abc import Mapping

    from aio_pika.abc import (
        AbstractChannel,
        AbstractExchange,
        AbstractIncomingMessage,
        AbstractQueue,
    )

    from ..ports import Delivery, DeliveryCallback

logger = logging.getLogger(__name__)


class AioPikaChannel:
    """Implements the ``AmqpChannel`` port on top of an aio-pika channel.

    Each ``consume`` registers a broker consumer that feeds an inbox and starts
    a dispatch task draining it: a delivery is settled before the next one is
    handed over. ``close`` cancels the dispatch tasks first, so unsettled
    deliveries are returned to the queue by the broker.
    """

    def __init__(self, channel: AbstractChannel) -> None:
        self._channel = channel
        self._queues: dict[str, AbstractQueue] = {}
        self._exchanges: dict[str, AbstractExchange] = {}
        self._dispatchers: set[asyncio.Task[None]] = set()

    # ── Topology ─────────────────────────────────────────────────

    async def assert_queue(
        self,
        queue: str,
        *,
        durable: bool = True,
        arguments: Mapping[str, Any] | None = None,
    ) -> None:
        self._queues[queue] = await self._channel.declare_queue(
            queue,
            durable=durable,
            arguments=dict(arguments) if arguments else None,
        )

    async def assert_exchange(
        self, exchange: str, exchange_type: str, *, durable: bool = True
    ) -> None:
        self._exchanges[exchange] = await self._channel.declare_exchange(
            exchange,
            ExchangeType(exchange_type),
            durable=durable,
        )

    async def bind_queue(self, queue: str, exchange: str, routing_key: str) -> None:
        declared = await self._get_queue(queue)
        await declared.bind(await self._get_exchange(exchange), routing_key=routing_key)

    # ── Consuming ────────────────────────────────────────────────

    async def consume(self, queue: str, on_delivery: DeliveryCallback) -> None:
        declared = await self._get_queue(queue)
        inbox: asyncio.Queue[AbstractIncomingMessage] = asyncio.Queue()
        await declared.consume(inbox.put)
        task = asyncio.create_task(
            self._dispatch(inbox, on_delivery), name=f"amqp-consume:{queue}"
        )
        self._dispatchers.add(task)
        task.add_done_callback(self._dispatchers.discard)

    @staticmethod
    async def _dispatch(
        inbox: asyncio.Queue[AbstractIncomingMessage],
        on_delivery: DeliveryCallback,
    ) -> None:
        while True:
            message = await inbox.get()
            try:
                await on_delivery(message)
            except Exception:
                logger.exception("Delivery callback raised; continuing")
            finally:
                inbox.task_done()

    async def ack(self, delivery: Delivery) -> None:
        await cast("AbstractIncomingMessage", delivery).ack()

    async def nack(self, delivery: Delivery, *, requeue: bool) -> None:
        await cast("AbstractIncomingMessage", delivery).nack(requeue=requeue)

    # ── Publishing ───────────────────────────────────────────────

    async def publish(
        self,
        exchange: str,
        routing_key: str,
        body: bytes,
        *,
        headers: Mapping[str, Any] | None = None,
    ) -> bool:
        message = aio_pika.Message(
            body=body,
            content_type=CONTENT_TYPE,
            delivery_mode=DeliveryMode.PERSISTENT,
            headers=dict(headers) if headers else None,
        )
        target = await self._get_exchange(exchange)
        try:
            confirmation = await target.publish(message, routing_key=routing_key)
        except (DeliveryError, PublishError) as e:
            logger.warning(
                "Broker refused message for %s[%s]: %s", exchange, routing_key, e
            )
            return False
        return not isinstance(confirmation, (Basic.Nack, Basic.Reject))

    # ── Lifecycle ────────────────────────────────────────────────

    async def close(self) -> None:
        dispatchers = list(self._dispatchers)
        for task in dispatchers:
            task.cancel()
        await asyncio.gather(*dispatchers, return_exceptions=True)
        await self._channel.close()

    # ── Lookups ──────────────────────────────────────────────────

    async def _get_queue(self, name: str) -> AbstractQueue:
        if name not in self._queues:
            self._queues[name] = await self._channel.get_queue(name, ensure=False)
        return self._queues[name]

    async def _get_exchange(self, name: str) -> AbstractExchange:
        if not name:
            return self._channel.default_exchange
        if name not in self._exchanges:
            self._exchanges[name] = await self._channel.get_exchange(
                name, ensure=False
            )
        return self._exchanges[name]
