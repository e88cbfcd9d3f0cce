"""Settlement decisions: failure classification and delivery-count parsing."""

from __future__ import annotations

import math
import sys
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

DELIVERY_COUNT_HEADER = "x-delivery-count"


class FailureKind(Enum):
    """How a handler failure should be treated by the broker."""

    RETRIABLE = "retriable"
    FATAL = "fatal"


class Settlement(Enum):
    """Final answer given to the broker for one delivery."""

    ACK = "ack"
    REQUEUE = "requeue"
    REJECT = "reject"


@dataclass(frozen=True)
class HandlerFailure:
    """Tagged failure variant inspected by value.

    ``RETRIABLE`` failures carry the number of redeliveries the raising site
    tolerates; ``FATAL`` failures always carry ``retry_limit == 0``.
    """

    kind: FailureKind
    cause: BaseException | None = None
    retry_limit: int = 0

    def __post_init__(self) -> None:
        if isinstance(self.retry_limit, bool) or not isinstance(self.retry_limit, int):
            raise ValueError("retry_limit must be an integer")
        if self.retry_limit < 0:
            raise ValueError("retry_limit must be >= 0")
        if self.kind is FailureKind.FATAL and self.retry_limit:
            raise ValueError("fatal failures cannot carry a retry_limit")

    @classmethod
    def retriable(
        cls, cause: BaseException | None = None, retry_limit: int = 0
    ) -> HandlerFailure:
        return cls(FailureKind.RETRIABLE, cause, retry_limit)

    @classmethod
    def fatal(cls, cause: BaseException | None = None) -> HandlerFailure:
        return cls(FailureKind.FATAL, cause)


def classify_failure(error: BaseException) -> HandlerFailure:
    """Return the failure variant attached to *error*.

    Errors expose their classification through a ``failure`` attribute; any
    error without one is fatal.
    """
    failure = getattr(error, "failure", None)
    if isinstance(failure, HandlerFailure):
        return failure
    return HandlerFailure.fatal(error)


def delivery_count(headers: Mapping[str, Any] | None) -> int:
    """Parse the ``x-delivery-count`` header.

    Absent, unparsable, NaN or negative values count as ``0``. Positive
    infinity is at or over any retry limit.
    Fractional values are floored, which keeps ``count < limit`` unchanged
    for integer limits.
    """
    if not headers:
        return 0
    raw = headers.get(DELIVERY_COUNT_HEADER)
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return 0
    if isinstance(raw, bool):
        return 0
    if isinstance(raw, str):
        raw = _parse_number(raw)
    if not isinstance(raw, (int, float)) or math.isnan(raw):
        return 0
    if math.isinf(raw):
        return sys.maxsize if raw > 0 else 0
    return max(0, math.floor(raw))


def _parse_number(text: str) -> float | None:
    text = text.strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return None


def settle_failure(failure: HandlerFailure, count: int) -> Settlement:
    """Decide between requeue and reject for a failed handler invocation."""
    if failure.kind is FailureKind.RETRIABLE:
        if count < failure.retry_limit:
            return Settlement.REQUEUE
        return Settlement.REJECT
    if failure.kind is FailureKind.FATAL:
        return Settlement.REJECT
    raise ValueError(f"Unknown failure kind: {failure.kind!r}")
