"""AmqpClient: connection/channel lifecycle, consumer startup and guarded publish."""

from __future__ import annotations

import asyncio
import functools
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from .exceptions import (
    AmqpConnectionError,
    AmqpPublisherError,
    AmqpShutdownError,
    AmqpUninitializedError,
)
from .serialization import PayloadSerializer

if TYPE_CHECKING:
    from collections.abc import Iterable
    from types import TracebackType

    from .config import AmqpConfig
    from .consumer import Consumer
    from .ports import AmqpChannel, AmqpConnection, Connector

logger = logging.getLogger(__name__)


class ClientState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    CLOSED = "closed"


def _default_connector(config: AmqpConfig) -> Connector:
    from .rabbitmq import connect

    return functools.partial(connect, prefetch_count=config.prefetch_count)


class AmqpClient:
    """Owns one connection and the single channel shared by all consumers.

    Call ``start()`` before publishing and ``stop()`` on shutdown, or use the
    client as an async context manager. A failed ``start()`` is not retried.
    """

    def __init__(
        self,
        config: AmqpConfig,
        consumers: Iterable[Consumer[Any]] = (),
        *,
        connector: Connector | None = None,
        serializer: PayloadSerializer | None = None,
    ) -> None:
        """Configure the client.

        Args:
            config: Validated configuration.
            consumers: Consumers started against the shared channel.
            connector: Opens the transport connection; defaults to aio-pika.
            serializer: Used to encode published payloads.
        """
        self._config = config
        self._consumers: list[Consumer[Any]] = list(consumers)
        self._connector = connector or _default_connector(config)
        self._serializer = serializer or PayloadSerializer()
        self._state = ClientState.DISCONNECTED
        self._connection: AmqpConnection | None = None
        self._channel: AmqpChannel | None = None

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def consumers(self) -> tuple[Consumer[Any], ...]:
        return tuple(self._consumers)

    def register(self, consumer: Consumer[Any]) -> None:
        """Add a consumer; it is started by the next ``start()``."""
        self._consumers.append(consumer)

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        """Connect, open the shared channel and start every consumer concurrently."""
        if self._state is ClientState.CONNECTED:
            return
        target = self._config.redacted_connection_string
        connection: AmqpConnection | None = None
        channel: AmqpChannel | None = None
        try:
            connection = await self._connector(self._config.connection_string)
            channel = await connection.create_channel()
            await self._start_consumers(channel)
        except Exception as e:
            logger.error("Failed to start AMQP client for %s: %s", target, e)
            await self._discard(channel, connection)
            raise AmqpConnectionError(str(e), target) from e

        self._connection = connection
        self._channel = channel
        self._state = ClientState.CONNECTED
        logger.info(
            "Connected to %s with %d consumer(s)", target, len(self._consumers)
        )

    async def _start_consumers(self, channel: AmqpChannel) -> None:
        """Start all consumers concurrently; the first failure cancels the rest.

        Returns only once every startup task has finished, so nothing touches
        the channel after a failed start has closed it.
        """
        tasks = [
            asyncio.create_task(c.start(channel), name=f"amqp-start:{c.binding.queue}")
            for c in self._consumers
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def stop(self) -> None:
        """Close the channel, then the connection. Safe to call at any time."""
        if self._state is not ClientState.CONNECTED:
            return
        channel, connection = self._channel, self._connection
        self._channel = None
        self._connection = None
        self._state = ClientState.CLOSED

        errors: list[BaseException] = []
        for resource in (channel, connection):
            if resource is None:
                continue
            try:
                await resource.close()
            except Exception as e:  # noqa: BLE001
                errors.append(e)
        if errors:
            raise AmqpShutdownError(errors)
        logger.info("Disconnected from %s", self._config.redacted_connection_string)

    async def _discard(
        self, channel: AmqpChannel | None, connection: AmqpConnection | None
    ) -> None:
        """Close whatever a failed start opened."""
        for resource in (channel, connection):
            if resource is None:
                continue
            try:
                await resource.close()
            except Exception:  # noqa: BLE001
                logger.warning(
                    "Cleanup after failed start raised", exc_info=True
                )

    # ── Publishing ───────────────────────────────────────────────

    async def publish(self, exchange: str, topic: str, payload: Any) -> None:
        """Publish *payload* as JSON to *exchange* with routing key *topic*.

        Raises:
            AmqpUninitializedError: The client is not started.
            AmqpPublisherError: The transport refused the message.
        """
        if self._state is not ClientState.CONNECTED or self._channel is None:
            raise AmqpUninitializedError
        body = self._serializer.serialize(payload)
        accepted = await self._channel.publish(exchange, topic, body)
        if not accepted:
            logger.warning("Publish to %s[%s] was refused", exchange, topic)
            raise AmqpPublisherError(exchange, topic, payload)

    # ── Health ───────────────────────────────────────────────────

    async def health_check(self) -> bool:
        """Return True if the client is started and the connection is open."""
        if self._state is not ClientState.CONNECTED or self._connection is None:
            return False
        return not self._connection.is_closed

    async def __aenter__(self) -> AmqpClient:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()
