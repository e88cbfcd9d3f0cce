"""Tests for the in-memory broker and end-to-end client behaviour on it."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock

import pytest

from reliable_amqp import AmqpClient, AmqpRetriableError, Consumer, ConsumerBinding
from reliable_amqp.config import AmqpConfig
from reliable_amqp.exceptions import AmqpPublisherError
from reliable_amqp.memory import InMemoryBroker, InMemoryDelivery, topic_matches
from reliable_amqp.outcome import DELIVERY_COUNT_HEADER

QUORUM = {"x-queue-type": "quorum"}


@pytest.mark.parametrize(
    ("pattern", "key", "expected"),
    [
        ("order.created", "order.created", True),
        ("order.*", "order.created", True),
        ("order.*", "order.created.eu", False),
        ("order.*", "order", False),
        ("order.#", "order", True),
        ("order.#", "order.created.eu", True),
        ("#", "anything.at.all", True),
        ("*.created", "order.created", True),
        ("*.created", "order.updated", False),
        ("#.eu", "order.created.eu", True),
        ("a.#.z", "a.z", True),
        ("a.#.z", "a.b.c.z", True),
        ("a.#.z", "a.b.c", False),
    ],
)
def test_topic_matches(pattern: str, key: str, expected: bool) -> None:
    assert topic_matches(pattern, key) is expected


# ============================================================================
# Broker topology and routing
# ============================================================================


class TestBroker:
    def test_negative_buffer_rejected(self) -> None:
        with pytest.raises(ValueError):
            InMemoryBroker(max_buffered=-1)

    def test_queue_redeclare_with_other_settings(self) -> None:
        broker = InMemoryBroker()
        broker.declare_queue("q", durable=True, arguments=QUORUM)
        broker.declare_queue("q", durable=True, arguments=QUORUM)
        with pytest.raises(ValueError, match="redeclared"):
            broker.declare_queue("q", durable=True, arguments=None)

    def test_exchange_type_conflict(self) -> None:
        broker = InMemoryBroker()
        broker.declare_exchange("ex", "topic")
        with pytest.raises(ValueError):
            broker.declare_exchange("ex", "fanout")
        with pytest.raises(ValueError, match="unsupported"):
            broker.declare_exchange("other", "headers")

    def test_bind_requires_declared_topology(self) -> None:
        broker = InMemoryBroker()
        with pytest.raises(LookupError):
            broker.bind("q", "ex", "#")

    def test_route_to_unknown_exchange(self) -> None:
        with pytest.raises(LookupError):
            InMemoryBroker().route("missing", "k", b"{}")

    def test_topic_routing_fans_out_once_per_queue(self) -> None:
        broker = InMemoryBroker()
        broker.declare_exchange("orders", "topic")
        for queue in ("billing", "audit", "shipping"):
            broker.declare_queue(queue, durable=True, arguments=QUORUM)
        broker.bind("billing", "orders", "order.created")
        broker.bind("audit", "orders", "#")
        broker.bind("audit", "orders", "order.*")
        broker.bind("shipping", "orders", "order.shipped")

        assert broker.route("orders", "order.created", b"{}")

        assert broker.queue_depth("billing") == 1
        assert broker.queue_depth("audit") == 1
        assert broker.queue_depth("shipping") == 0

    def test_default_exchange_routes_by_queue_name(self) -> None:
        broker = InMemoryBroker()
        broker.declare_queue("direct-q", durable=True, arguments=None)
        assert broker.route("", "direct-q", b"{}")
        assert broker.queue_depth("direct-q") == 1

    @pytest.mark.asyncio
    async def test_requeue_increments_quorum_delivery_count(self) -> None:
        broker = InMemoryBroker()
        broker.declare_queue("q", durable=True, arguments=QUORUM)
        headers = {DELIVERY_COUNT_HEADER: "2"}
        delivery = InMemoryDelivery(b"{}", headers, "", "q", "q")
        seen: list[Any] = []

        async def collect(d: Any) -> None:
            seen.append(d)

        broker.settle(delivery, ack=False, requeue=True)
        broker.add_consumer("q", 0, collect)
        await broker.drain()

        assert broker.requeued == [delivery]
        assert seen[0].headers[DELIVERY_COUNT_HEADER] == 3
        assert seen[0].redelivered is True

    def test_classic_queue_has_no_delivery_count(self) -> None:
        broker = InMemoryBroker()
        broker.declare_queue("q", durable=True, arguments=None)
        broker.return_to_queue(InMemoryDelivery(b"{}", {}, "", "q", "q"))
        assert broker.pending_count() == 1


# ============================================================================
# Channel
# ============================================================================


class TestChannel:
    @pytest.mark.asyncio
    async def test_close_returns_unsettled_deliveries(self) -> None:
        broker = InMemoryBroker()
        connection = await broker.connect("memory://")
        channel = await connection.create_channel()
        await channel.assert_queue("q", durable=True, arguments=QUORUM)
        received: list[Any] = []

        async def hold(delivery: Any) -> None:
            received.append(delivery)

        await channel.consume("q", hold)
        broker.route("", "q", b'{"id": 1}')
        await broker.drain()
        assert broker.queue_depth("q") == 0

        await channel.close()

        assert broker.queue_depth("q") == 1
        channel2 = await connection.create_channel()
        redelivered: list[Any] = []

        async def collect(delivery: Any) -> None:
            redelivered.append(delivery)

        await channel2.consume("q", collect)
        await broker.drain()
        assert redelivered[0].redelivered is True
        assert redelivered[0].headers[DELIVERY_COUNT_HEADER] == 1

    @pytest.mark.asyncio
    async def test_closed_channel_refuses_work(self) -> None:
        broker = InMemoryBroker()
        channel = await (await broker.connect("memory://")).create_channel()
        await channel.close()
        with pytest.raises(RuntimeError, match="closed"):
            await channel.publish("", "q", b"{}")

    @pytest.mark.asyncio
    async def test_double_settle_is_rejected(self) -> None:
        broker = InMemoryBroker()
        channel = await (await broker.connect("memory://")).create_channel()
        await channel.assert_queue("q", durable=True, arguments=None)
        seen: list[Any] = []

        async def collect(delivery: Any) -> None:
            seen.append(delivery)

        await channel.consume("q", collect)
        broker.route("", "q", b"{}")
        await broker.drain()

        await channel.ack(seen[0])
        with pytest.raises(RuntimeError, match="unknown delivery tag"):
            await channel.ack(seen[0])

    @pytest.mark.asyncio
    async def test_closed_connection_refuses_channels(self) -> None:
        connection = await InMemoryBroker().connect("memory://")
        await connection.close()
        with pytest.raises(RuntimeError):
            await connection.create_channel()


# ============================================================================
# End to end through AmqpClient
# ============================================================================


@pytest.fixture
def broker() -> InMemoryBroker:
    return InMemoryBroker()


def _client(
    config: AmqpConfig, broker: InMemoryBroker, *consumers: Consumer[Any]
) -> AmqpClient:
    return AmqpClient(config, consumers, connector=broker.connect)


@pytest.mark.asyncio
async def test_publish_reaches_matching_consumer(
    config: AmqpConfig, broker: InMemoryBroker
) -> None:
    handler = AsyncMock()
    consumer = Consumer(ConsumerBinding("billing", "orders", "order.*"), handler)

    async with _client(config, broker, consumer) as client:
        await client.publish("orders", "order.created", {"id": 1})
        await client.publish("orders", "invoice.created", {"id": 2})
        await broker.drain()

    handler.assert_awaited_once_with({"id": 1})
    assert len(broker.acked) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("retry_limit", [0, 1, 3])
async def test_retriable_failure_is_attempted_limit_plus_one_times(
    config: AmqpConfig, broker: InMemoryBroker, retry_limit: int
) -> None:
    handler = AsyncMock(side_effect=AmqpRetriableError(TimeoutError(), retry_limit))
    consumer = Consumer(ConsumerBinding("billing", "orders", "order.*"), handler)

    async with _client(config, broker, consumer) as client:
        await client.publish("orders", "order.created", {"id": 1})
        await broker.drain()

    assert handler.await_count == retry_limit + 1
    assert len(broker.requeued) == retry_limit
    assert len(broker.dead_lettered) == 1
    assert broker.pending_count() == 0


@pytest.mark.asyncio
async def test_handler_recovers_after_retry(
    config: AmqpConfig, broker: InMemoryBroker
) -> None:
    handler = AsyncMock(side_effect=[AmqpRetriableError(None, 5), None])
    consumer = Consumer(ConsumerBinding("billing", "orders", "order.*"), handler)

    async with _client(config, broker, consumer) as client:
        await client.publish("orders", "order.created", {"id": 1})
        await broker.drain()

    assert handler.await_count == 2
    assert len(broker.acked) == 1
    assert broker.acked[0].headers[DELIVERY_COUNT_HEADER] == 1


@pytest.mark.asyncio
async def test_invalid_payload_is_dead_lettered(
    config: AmqpConfig, broker: InMemoryBroker
) -> None:
    handler = AsyncMock()
    consumer = Consumer(
        ConsumerBinding("billing", "orders", "order.*"),
        handler,
        validator=lambda p: isinstance(p, dict) and "id" in p,
    )

    async with _client(config, broker, consumer) as client:
        await client.publish("orders", "order.created", ["not", "an", "order"])
        await broker.drain()

    handler.assert_not_called()
    assert len(broker.dead_lettered) == 1


@pytest.mark.asyncio
async def test_backpressure_surfaces_as_publisher_error(config: AmqpConfig) -> None:
    broker = InMemoryBroker(max_buffered=1)
    consumer = Consumer(ConsumerBinding("billing", "orders", "#"), AsyncMock())

    async with _client(config, broker, consumer) as client:
        await client.publish("orders", "order.created", {"id": 1})
        with pytest.raises(AmqpPublisherError):
            await client.publish("orders", "order.created", {"id": 2})
        await broker.drain()
        await client.publish("orders", "order.created", {"id": 3})


@pytest.mark.asyncio
async def test_consumers_share_one_channel(
    config: AmqpConfig, broker: InMemoryBroker
) -> None:
    consumers = [
        Consumer(ConsumerBinding(f"q{i}", "orders", "#"), AsyncMock())
        for i in range(3)
    ]
    async with _client(config, broker, *consumers):
        assert len(broker.connections) == 1
        assert len(broker.connections[0].channels) == 1
    assert broker.connections[0].is_closed
