"""ConsumerBinding: topology of one subscription."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ConsumerBinding:
    """
    Identifies the queue a consumer reads and how it is bound.

    Examples:
        >>> ConsumerBinding("billing.orders", "orders", "order.*")
        >>> ConsumerBinding("audit", "orders", "#")
    """

    queue: str
    exchange: str
    topic: str

    def __post_init__(self) -> None:
        if not isinstance(self.queue, str) or not self.queue:
            raise ValueError("queue must be a non-empty string")
        if not isinstance(self.exchange, str) or not self.exchange:
            raise ValueError("exchange must be a non-empty string")
        if not isinstance(self.topic, str):
            raise ValueError("topic must be a string")

    def __str__(self) -> str:
        return f"{self.exchange}[{self.topic}] -> {self.queue}"
