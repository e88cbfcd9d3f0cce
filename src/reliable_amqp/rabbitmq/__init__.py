"""RabbitMQ transport adapter built on aio-pika."""

from __future__ import annotations

from .channel import AioPikaChannel
from .connection import AioPikaConnection, connect

__all__ = [
    "AioPikaChannel",
    "AioPikaConnection",
    "connect",
]
