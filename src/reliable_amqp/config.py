"""AmqpConfig: connection settings validated from the process environment."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING
from urllib.parse import urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .exceptions import AmqpConfigError

if TYPE_CHECKING:
    from collections.abc import Mapping

CONNECTION_STRING_ENV = "AMQP_CONNECTION_STRING"
PREFETCH_COUNT_ENV = "AMQP_PREFETCH_COUNT"
ALLOWED_SCHEMES = ("amqp", "amqps")


class AmqpConfig(BaseModel):
    """Validated client configuration.

    Usage::

        config = AmqpConfig.from_env()  # reads os.environ
        config = AmqpConfig.from_env({"AMQP_CONNECTION_STRING": "amqp://localhost"})
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    connection_string: str = Field(..., alias=CONNECTION_STRING_ENV)
    prefetch_count: int = Field(default=10, ge=0, alias=PREFETCH_COUNT_ENV)

    @field_validator("connection_string")
    @classmethod
    def check_scheme(cls, value: str) -> str:
        scheme = urlsplit(value).scheme
        if scheme not in ALLOWED_SCHEMES:
            raise ValueError(
                f"must be a URI with scheme {' or '.join(ALLOWED_SCHEMES)}"
            )
        return value

    @property
    def redacted_connection_string(self) -> str:
        """Connection string safe for logs and error messages."""
        return redact_url(self.connection_string)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> AmqpConfig:
        """Build a config from *env* (default ``os.environ``).

        Every violation is reported in a single :class:`AmqpConfigError`.
        """
        source = os.environ if env is None else env
        try:
            return cls.model_validate(dict(source))
        except PydanticValidationError as exc:
            raise AmqpConfigError(_collect_errors(exc)) from exc


def load_config(env: Mapping[str, str] | None = None) -> AmqpConfig:
    """Shortcut for :meth:`AmqpConfig.from_env`."""
    return AmqpConfig.from_env(env)


def redact_url(url: str) -> str:
    """Replace the password of *url* with ``***``."""
    try:
        parts = urlsplit(url)
        password = parts.password
    except ValueError:
        return url
    if password is None:
        return url
    host = parts.netloc.rpartition("@")[2]
    netloc = f"{parts.username or ''}:***@{host}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def _collect_errors(exc: PydanticValidationError) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    for error in exc.errors():
        loc = ".".join(str(p) for p in error.get("loc", ("__root__",))) or "__root__"
        msg = error.get("msg", "validation error")
        errors.setdefault(loc, []).append(msg)
    return errors
