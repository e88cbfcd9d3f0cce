"""In-memory broker for tests: routing, quorum delivery counts, requeue."""

from __future__ import annotations

import itertools
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..outcome import DELIVERY_COUNT_HEADER, delivery_count

if TYPE_CHECKING:
    from collections.abc import Mapping

    from ..ports import DeliveryCallback
    from .connection import InMemoryConnection

logger = logging.getLogger(__name__)

EXCHANGE_TYPES = ("topic", "direct", "fanout")


def topic_matches(pattern: str, routing_key: str) -> bool:
    """AMQP topic matching: ``*`` is exactly one word, ``#`` zero or more."""
    return _match(pattern.split("."), routing_key.split("."))


def _match(pattern: list[str], words: list[str]) -> bool:
    if not pattern:
        return not words
    head, rest = pattern[0], pattern[1:]
    if head == "#":
        return any(_match(rest, words[i:]) for i in range(len(words) + 1))
    if not words:
        return False
    if head in ("*", words[0]):
        return _match(rest, words[1:])
    return False


@dataclass
class InMemoryDelivery:
    """A message sitting in, or handed out from, an in-memory queue."""

    body: bytes
    headers: dict[str, Any]
    exchange: str
    routing_key: str
    queue: str
    delivery_tag: int = 0
    redelivered: bool = False


@dataclass
class _Queue:
    name: str
    durable: bool
    arguments: dict[str, Any]
    messages: deque[InMemoryDelivery] = field(default_factory=deque)
    consumers: list[tuple[int, DeliveryCallback]] = field(default_factory=list)
    next_consumer: int = 0

    @property
    def is_quorum(self) -> bool:
        return self.arguments.get("x-queue-type") == "quorum"


class InMemoryBroker:
    """Shared broker state behind :class:`InMemoryConnection` objects.

    Deliveries are dispatched explicitly with :meth:`drain` so tests control
    when handlers run. ``max_buffered`` emulates transport backpressure:
    publishes beyond it return ``False``.

    Usage::

        broker = InMemoryBroker()
        client = AmqpClient(config, consumers, connector=broker.connect)
        await client.start()
        await client.publish("orders", "order.created", {"id": 1})
        await broker.drain()
    """

    def __init__(self, *, max_buffered: int | None = None) -> None:
        if max_buffered is not None and max_buffered < 0:
            raise ValueError("max_buffered must be >= 0")
        self._max_buffered = max_buffered
        self._exchanges: dict[str, str] = {}
        self._queues: dict[str, _Queue] = {}
        self._bindings: list[tuple[str, str, str]] = []
        self._tags = itertools.count(1)
        self.connections: list[InMemoryConnection] = []
        self.published: list[tuple[str, str, bytes]] = []
        self.acked: list[InMemoryDelivery] = []
        self.requeued: list[InMemoryDelivery] = []
        self.dead_lettered: list[InMemoryDelivery] = []

    async def connect(self, target: str) -> InMemoryConnection:
        """Connector compatible with ``AmqpClient(connector=...)``."""
        from .connection import InMemoryConnection

        connection = InMemoryConnection(self, target)
        self.connections.append(connection)
        return connection

    # ── Topology ─────────────────────────────────────────────────

    def declare_queue(
        self, name: str, *, durable: bool, arguments: Mapping[str, Any] | None
    ) -> None:
        args = dict(arguments or {})
        existing = self._queues.get(name)
        if existing is None:
            self._queues[name] = _Queue(name, durable, args)
        elif existing.durable != durable or existing.arguments != args:
            raise ValueError(f"queue {name!r} redeclared with different settings")

    def declare_exchange(self, name: str, exchange_type: str) -> None:
        if exchange_type not in EXCHANGE_TYPES:
            raise ValueError(f"unsupported exchange type {exchange_type!r}")
        existing = self._exchanges.setdefault(name, exchange_type)
        if existing != exchange_type:
            raise ValueError(f"exchange {name!r} redeclared as {exchange_type!r}")

    def bind(self, queue: str, exchange: str, routing_key: str) -> None:
        if queue not in self._queues:
            raise LookupError(f"no queue {queue!r}")
        if exchange not in self._exchanges:
            raise LookupError(f"no exchange {exchange!r}")
        binding = (queue, exchange, routing_key)
        if binding not in self._bindings:
            self._bindings.append(binding)

    def queue_depth(self, queue: str) -> int:
        return len(self._queues[queue].messages)

    def pending_count(self) -> int:
        return sum(len(q.messages) for q in self._queues.values())

    # ── Consumers ────────────────────────────────────────────────

    def add_consumer(self, queue: str, owner: int, callback: DeliveryCallback) -> None:
        if queue not in self._queues:
            raise LookupError(f"no queue {queue!r}")
        self._queues[queue].consumers.append((owner, callback))

    def remove_consumers(self, owner: int) -> None:
        for queue in self._queues.values():
            queue.consumers = [c for c in queue.consumers if c[0] != owner]

    # ── Routing ──────────────────────────────────────────────────

    def route(
        self,
        exchange: str,
        routing_key: str,
        body: bytes,
        headers: Mapping[str, Any] | None = None,
    ) -> bool:
        """Route one message; ``False`` when the broker buffer is full."""
        if exchange and exchange not in self._exchanges:
            raise LookupError(f"no exchange {exchange!r}")
        limit = self._max_buffered
        if limit is not None and self.pending_count() >= limit:
            return False
        self.published.append((exchange, routing_key, body))
        for queue_name in self._targets(exchange, routing_key):
            self._queues[queue_name].messages.append(
                InMemoryDelivery(
                    body=body,
                    headers=dict(headers or {}),
                    exchange=exchange,
                    routing_key=routing_key,
                    queue=queue_name,
                )
            )
        return True

    def _targets(self, exchange: str, routing_key: str) -> list[str]:
        if not exchange:
            return [routing_key] if routing_key in self._queues else []
        exchange_type = self._exchanges[exchange]
        targets: list[str] = []
        for queue, bound_exchange, pattern in self._bindings:
            if bound_exchange != exchange or queue in targets:
                continue
            if (
                exchange_type == "fanout"
                or (exchange_type == "direct" and pattern == routing_key)
                or (exchange_type == "topic" and topic_matches(pattern, routing_key))
            ):
                targets.append(queue)
        return targets

    # ── Settlement ───────────────────────────────────────────────

    def settle(self, delivery: InMemoryDelivery, *, ack: bool, requeue: bool) -> None:
        if ack:
            self.acked.append(delivery)
        elif requeue:
            self.requeued.append(delivery)
            self.return_to_queue(delivery)
        else:
            self.dead_lettered.append(delivery)

    def return_to_queue(self, delivery: InMemoryDelivery) -> None:
        """Put an unsettled delivery back at the head of its queue."""
        queue = self._queues[delivery.queue]
        headers = dict(delivery.headers)
        if queue.is_quorum:
            headers[DELIVERY_COUNT_HEADER] = delivery_count(headers) + 1
        queue.messages.appendleft(
            InMemoryDelivery(
                body=delivery.body,
                headers=headers,
                exchange=delivery.exchange,
                routing_key=delivery.routing_key,
                queue=delivery.queue,
                redelivered=True,
            )
        )

    # ── Dispatch ─────────────────────────────────────────────────

    async def drain(self, max_deliveries: int = 10_000) -> int:
        """Deliver queued messages to consumers until every queue is idle.

        Returns the number of deliveries made. Raises ``RuntimeError`` when
        ``max_deliveries`` is exceeded (a message requeued forever).
        """
        delivered = 0
        progress = True
        while progress:
            progress = False
            for queue in list(self._queues.values()):
                if not queue.messages or not queue.consumers:
                    continue
                if delivered >= max_deliveries:
                    raise RuntimeError(
                        f"drain exceeded {max_deliveries} deliveries"
                    )
                delivery = queue.messages.popleft()
                delivery.delivery_tag = next(self._tags)
                index = queue.next_consumer % len(queue.consumers)
                queue.next_consumer += 1
                _, callback = queue.consumers[index]
                delivered += 1
                progress = True
                await callback(delivery)
        logger.debug("Drained %d deliveries", delivered)
        return delivered
