"""Publishes messages to the exchange or queue named by a ``QueueConfig``."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Any, Dict, List, Optional, Sequence, Union

import pika
from pika.adapters.blocking_connection import BlockingChannel

from broker_messaging.contracts import IRabbitMQConnection, ITracer
from broker_messaging.errors import (
    BatchPublishError,
    ConfirmTimeoutError,
    MessagingError,
    PublishError,
)
from broker_messaging.queue_config import QueueConfig
from broker_messaging.roles import Role
from broker_messaging.topology import ChannelDeclarer
from broker_messaging.tracing import NoOpTracer

Message = Union[str, bytes]

DEFAULT_PUBLISH_TIMEOUT = 5.0
PERSISTENT_DELIVERY_MODE = 2


class Deadline:
    """A point on the monotonic clock shared by the steps of one operation."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        self._expires_at = time.monotonic() + timeout

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self._expires_at


def encode_message(message: Message) -> bytes:
    if isinstance(message, bytes):
        return message
    return message.encode("utf-8")


class RabbitMQProducer:
    """Publishes persistent messages on a channel it owns exclusively.

    The channel is (re)declared whenever it is missing or closed. With
    publisher confirms enabled the channel runs in confirm mode, so every
    ``basic_publish`` returns only once the broker has acked the message; a
    nack raises ``PublishError`` and an ack that arrives after the deadline
    raises ``ConfirmTimeoutError``. pika gives the confirm wait no timeout of
    its own; it is bounded by the connection's heartbeat and blocked
    connection timeout, which turn a dead or blocked broker into a
    ``PublishError``.

    The producer never retries; see ``send_with_retry`` for the retrying
    wrapper used by the send API.
    """

    def __init__(
        self,
        *,
        connection: IRabbitMQConnection,
        queue_config: QueueConfig,
        tracer: Optional[ITracer] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.connection = connection
        self.queue_config = queue_config
        self.tracer = tracer or NoOpTracer()
        self.declarer = ChannelDeclarer(connection, queue_config, logger=self.logger)
        self.channel: Optional[BlockingChannel] = None
        # The underlying channel is not safe for concurrent writes.
        self._lock = threading.RLock()

    @property
    def key(self) -> str:
        return self.queue_config.key

    @property
    def confirms_enabled(self) -> bool:
        return self.queue_config.publish_confirm.enabled

    def open(self) -> None:
        """Declare the producer channel eagerly."""
        with self._lock:
            self._ensure_channel()

    def publish(self, message: Message, timeout: Optional[float] = None) -> None:
        deadline = Deadline(self._resolve_timeout(timeout))
        with self._lock, self.tracer.span(
            f"{self.queue_config.descriptor.queue_name} publish",
            role=Role.PRODUCER,
            attributes=self._span_attributes(batch_size=1),
        ):
            channel = self._ensure_channel()
            self._send(channel, encode_message(message), deadline)

    def publish_batch(
        self,
        messages: Optional[Sequence[Message]],
        timeout: Optional[float] = None,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Publish ``messages`` in order under one shared deadline.

        Sending stops early once the deadline passes or ``cancel_event`` is
        set; every message that was not sent is reported as failed. A failure
        on one message does not prevent the following ones from being tried.
        """
        if not messages:
            return

        deadline = Deadline(self._resolve_timeout(timeout))
        failed: List[int] = []
        first_error: Optional[MessagingError] = None

        with self._lock, self.tracer.span(
            f"{self.queue_config.descriptor.queue_name} publish",
            role=Role.PRODUCER,
            attributes=self._span_attributes(batch_size=len(messages)),
        ):
            channel = self._ensure_channel()
            for index, message in enumerate(messages):
                interruption = self._interruption(deadline, cancel_event)
                if interruption is not None:
                    failed.extend(range(index, len(messages)))
                    first_error = first_error or interruption
                    break
                try:
                    self._send(channel, encode_message(message), deadline)
                except PublishError as exc:
                    failed.append(index)
                    first_error = first_error or exc

            if failed:
                self.logger.error(
                    "Batch publish to %s failed for %d of %d message(s)",
                    self.key,
                    len(failed),
                    len(messages),
                )
                raise BatchPublishError(failed, first_error, descriptor=self.key) from first_error

    def close_channel(self) -> None:
        with self._lock:
            channel, self.channel = self.channel, None
            if channel is None or channel.is_closed:
                return
            try:
                channel.close()
            except pika.exceptions.AMQPError as exc:
                self.logger.debug("Ignoring error while closing channel for %s: %s", self.key, exc)

    def close(self) -> None:
        self.close_channel()
        self.connection.close()

    def _ensure_channel(self) -> BlockingChannel:
        if self.channel is None or self.channel.is_closed:
            self.channel = self.declarer.open_channel(Role.PRODUCER)
        return self.channel

    def _send(self, channel: BlockingChannel, body: bytes, deadline: Deadline) -> None:
        if deadline.expired:
            raise PublishError(
                f"Publish deadline of {deadline.timeout}s exceeded before sending",
                descriptor=self.key,
            )

        descriptor = self.queue_config.descriptor
        properties = pika.BasicProperties(
            delivery_mode=PERSISTENT_DELIVERY_MODE,
            message_id=uuid.uuid4().hex,
        )
        try:
            channel.basic_publish(
                exchange=descriptor.exchange_name,
                routing_key=descriptor.publish_routing_key,
                body=body,
                properties=properties,
            )
        except pika.exceptions.NackError as exc:
            raise PublishError("Broker rejected the message (nack)", descriptor=self.key) from exc
        except pika.exceptions.AMQPError as exc:
            raise PublishError(f"Failed to publish message: {exc!r}", descriptor=self.key) from exc

        if self.confirms_enabled and deadline.expired:
            raise ConfirmTimeoutError(
                f"Publisher confirm not received within {deadline.timeout}s",
                descriptor=self.key,
            )

    def _interruption(
        self, deadline: Deadline, cancel_event: Optional[threading.Event]
    ) -> Optional[PublishError]:
        if cancel_event is not None and cancel_event.is_set():
            return PublishError("Batch publish cancelled", descriptor=self.key)
        if deadline.expired:
            return PublishError(
                f"Batch deadline of {deadline.timeout}s exceeded", descriptor=self.key
            )
        return None

    def _resolve_timeout(self, timeout: Optional[float]) -> float:
        if timeout is not None and timeout > 0:
            return timeout
        if self.queue_config.publish_confirm.timeout > 0:
            return self.queue_config.publish_confirm.timeout
        return DEFAULT_PUBLISH_TIMEOUT

    def _span_attributes(self, *, batch_size: int) -> Dict[str, Any]:
        descriptor = self.queue_config.descriptor
        return {
            "messaging.destination.name": descriptor.exchange_name or descriptor.queue_name,
            "messaging.rabbitmq.destination.routing_key": descriptor.publish_routing_key,
            "messaging.batch.message_count": batch_size,
        }
