"""In-memory transport adapters for testing."""

from __future__ import annotations

from .broker import InMemoryBroker, InMemoryDelivery, topic_matches
from .connection import InMemoryChannel, InMemoryConnection

__all__ = [
    "InMemoryBroker",
    "InMemoryChannel",
    "InMemoryConnection",
    "InMemoryDelivery",
    "topic_matches",
]
