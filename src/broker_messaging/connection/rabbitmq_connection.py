"""RabbitMQ connection management."""

from __future__ import annotations

import logging
import os
from types import TracebackType
from typing import Callable, Optional, Type
from urllib.parse import parse_qs, urlsplit

import pika
from pika.adapters.blocking_connection import BlockingChannel, BlockingConnection
from pika.connection import Parameters

from broker_messaging.contracts import IRabbitMQConnection
from broker_messaging.errors import ChannelError, ConnectError
from broker_messaging.settings import redact_url

ConnectionFactory = Callable[[Parameters], BlockingConnection]

DEFAULT_HEARTBEAT = 60
DEFAULT_BLOCKED_CONNECTION_TIMEOUT = 30.0


class RabbitMQConnection(IRabbitMQConnection):
    """Manages lifecycle of a blocking RabbitMQ connection.

    The connection is dialed on first use and redialed only when the cached
    one reports closed. Dial failures are raised to the caller; retrying is
    the caller's decision.

    ``heartbeat`` and ``blocked_connection_timeout`` bound how long a blocking
    call can hang on a dead or flow-controlled broker. Values given in the
    URL query string take precedence over the keyword arguments.
    """

    def __init__(
        self,
        rabbitmq_url: Optional[str] = None,
        *,
        alias: str = "",
        connection_factory: Optional[ConnectionFactory] = None,
        heartbeat: Optional[int] = DEFAULT_HEARTBEAT,
        blocked_connection_timeout: Optional[float] = DEFAULT_BLOCKED_CONNECTION_TIMEOUT,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        url = (rabbitmq_url or os.getenv("RABBITMQ_URL") or "").strip()
        if not url:
            raise ValueError(
                "RabbitMQ URL must be provided via argument or RABBITMQ_URL environment variable."
            )

        try:
            self._parameters: Parameters = pika.URLParameters(url)
        except ValueError as exc:
            raise ValueError(f"Invalid RabbitMQ URL provided: {redact_url(url)}") from exc

        query = parse_qs(urlsplit(url).query)
        if heartbeat is not None and "heartbeat" not in query:
            self._parameters.heartbeat = heartbeat
        if "blocked_connection_timeout" not in query:
            self._parameters.blocked_connection_timeout = blocked_connection_timeout

        self.rabbitmq_url = url
        self.alias = alias
        self.connection: Optional[BlockingConnection] = None
        self._connection_factory = connection_factory
        self.logger = logger or logging.getLogger(__name__)

    @property
    def is_usable(self) -> bool:
        return self.connection is not None and not self.connection.is_closed

    def connect(self) -> BlockingConnection:
        if self.connection is None or self.connection.is_closed:
            target = redact_url(self.rabbitmq_url)
            self.logger.info("Connecting to RabbitMQ at %s", target)
            factory = self._connection_factory or pika.BlockingConnection
            try:
                self.connection = factory(self._parameters)
            except pika.exceptions.AMQPError as exc:
                self.logger.error("Failed to establish RabbitMQ connection to %s: %s", target, exc)
                raise ConnectError(f"Failed to connect to {target}: {exc}") from exc
            self.logger.info("Connected to RabbitMQ at %s", target)

        return self.connection

    def channel(self) -> BlockingChannel:
        connection = self.connect()
        try:
            return connection.channel()
        except pika.exceptions.AMQPError as exc:
            self.logger.error("Failed to open RabbitMQ channel: %s", exc)
            raise ChannelError(f"Failed to open channel: {exc}") from exc

    def close(self) -> None:
        if self.connection and not self.connection.is_closed:
            try:
                self.connection.close()
            except pika.exceptions.AMQPError as exc:
                self.logger.warning("Error while closing RabbitMQ connection: %s", exc)
            else:
                self.logger.info("Closed RabbitMQ connection.")

    def __enter__(self) -> RabbitMQConnection:
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        self.close()
