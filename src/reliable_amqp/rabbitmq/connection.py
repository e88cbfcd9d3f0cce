"""aio-pika connection adapter."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import aio_pika

from .channel import AioPikaChannel

if TYPE_CHECKING:
    from aio_pika.abc import AbstractConnection


class AioPikaConnection:
    """Wraps an aio-pika connection behind the ``AmqpConnection`` port.

    Every channel it opens gets the configured prefetch (``basic.qos``).
    """

    def __init__(
        self,
        connection: AbstractConnection,
        *,
        prefetch_count: int = 0,
        publisher_confirms: bool = False,
    ) -> None:
        self._connection = connection
        self._prefetch_count = prefetch_count
        self._publisher_confirms = publisher_confirms

    @property
    def is_closed(self) -> bool:
        return bool(self._connection.is_closed)

    async def create_channel(self) -> AioPikaChannel:
        channel = await self._connection.channel(
            publisher_confirms=self._publisher_confirms
        )
        if self._prefetch_count:
            await channel.set_qos(prefetch_count=self._prefetch_count)
        return AioPikaChannel(channel)

    async def close(self) -> None:
        await self._connection.close()


async def connect(
    url: str,
    *,
    prefetch_count: int = 10,
    publisher_confirms: bool = False,
    **connect_kwargs: Any,
) -> AioPikaConnection:
    """Open a plain (non-robust) aio-pika connection to *url*.

    Reconnection is left to the caller; a lost connection is not restored.
    """
    connection = await aio_pika.connect(url, **connect_kwargs)
    return AioPikaConnection(
        connection,
        prefetch_count=prefetch_count,
        publisher_confirms=publisher_confirms,
    )
