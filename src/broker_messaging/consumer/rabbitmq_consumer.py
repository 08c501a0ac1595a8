"""Consumes one queue with manual acknowledgements."""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Dict, Optional

import pika
from pika.adapters.blocking_connection import BlockingChannel

from broker_messaging.contracts import (
    IMessageHandler,
    IRabbitMQConnection,
    ITracer,
    MessageContext,
)
from broker_messaging.errors import ConsumeError, MessagingError
from broker_messaging.handlers import handler_name
from broker_messaging.queue_config import QueueConfig
from broker_messaging.roles import Role
from broker_messaging.topology import ChannelDeclarer
from broker_messaging.tracing import NoOpTracer

from .retry_count import FailureLedger, retry_count

DEFAULT_INACTIVITY_TIMEOUT = 1.0


class ConsumerState(str, Enum):
    IDLE = "idle"
    DECLARING = "declaring"
    CONSUMING = "consuming"
    CLOSED_GRACEFULLY = "closed_gracefully"
    CLOSED_BY_ERROR = "closed_by_error"


class RabbitMQConsumer:
    """Runs the receive loop for one ``QueueConfig`` in the calling thread.

    Every delivery is handed to the handler. Success acks the message; a
    failure requeues it while its retry count is below ``max_retry`` and
    rejects it without requeue afterwards, which routes it to the dead-letter
    queue when one is configured.
    """

    def __init__(
        self,
        *,
        connection: IRabbitMQConnection,
        queue_config: QueueConfig,
        handler: IMessageHandler,
        tracer: Optional[ITracer] = None,
        ledger: Optional[FailureLedger] = None,
        log_message_content: bool = False,
        inactivity_timeout: float = DEFAULT_INACTIVITY_TIMEOUT,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.connection = connection
        self.queue_config = queue_config
        self.handler = handler
        self.tracer = tracer or NoOpTracer()
        self.ledger = ledger if ledger is not None else FailureLedger()
        self.log_message_content = log_message_content
        self.inactivity_timeout = inactivity_timeout
        self.declarer = ChannelDeclarer(connection, queue_config, logger=self.logger)
        self._state = ConsumerState.IDLE

    @property
    def key(self) -> str:
        return self.queue_config.key

    @property
    def state(self) -> ConsumerState:
        return self._state

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        """Consume until ``stop_event`` is set or the channel is lost.

        Returns normally on cancellation and raises ``ConsumeError`` (or the
        ``DeclareError`` of a failed setup) otherwise. Messages in flight at
        cancellation stay unacknowledged and are redelivered by the broker.
        """
        stop_event = stop_event or threading.Event()
        self._state = ConsumerState.DECLARING
        channel: Optional[BlockingChannel] = None
        try:
            channel = self.declarer.open_channel(Role.CONSUMER)
            self._state = ConsumerState.CONSUMING
            self.logger.info(
                "Started consuming from %s with handler %s", self.key, handler_name(self.handler)
            )
            self._consume(channel, stop_event)
        except MessagingError:
            self._state = ConsumerState.CLOSED_BY_ERROR
            raise
        finally:
            self._release(channel)

        self._state = ConsumerState.CLOSED_GRACEFULLY
        self.logger.info("Stopped consuming from %s", self.key)

    def _consume(self, channel: BlockingChannel, stop_event: threading.Event) -> None:
        descriptor = self.queue_config.descriptor
        try:
            for method, properties, body in channel.consume(
                queue=descriptor.queue_name,
                auto_ack=False,
                inactivity_timeout=self.inactivity_timeout,
            ):
                if stop_event.is_set():
                    return
                if method is None:
                    continue
                self._on_message(channel, method, properties, body, stop_event)
        except pika.exceptions.AMQPError as exc:
            if stop_event.is_set():
                return
            self.logger.error("Consumer channel for %s closed: %s", self.key, exc)
            raise ConsumeError(f"Consumer channel closed: {exc!r}", descriptor=self.key) from exc

        if not stop_event.is_set():
            self.logger.error("Consumer for %s was cancelled by the broker", self.key)
            raise ConsumeError("Consumer was cancelled by the broker", descriptor=self.key)

    def _on_message(
        self,
        channel: BlockingChannel,
        method: pika.spec.Basic.Deliver,
        properties: pika.spec.BasicProperties,
        body: bytes,
        stop_event: threading.Event,
    ) -> None:
        headers: Dict[str, Any] = dict(properties.headers or {})
        context = MessageContext(
            descriptor=self.queue_config.descriptor,
            delivery_tag=method.delivery_tag,
            redelivered=bool(method.redelivered),
            retry_count=retry_count(
                headers,
                redelivered=bool(method.redelivered),
                message_id=properties.message_id,
                ledger=self.ledger,
            ),
            message_id=properties.message_id,
            headers=headers,
            stop_event=stop_event,
        )

        if self.log_message_content:
            self.logger.info("Received message from %s: %r", self.key, body)
        else:
            self.logger.debug(
                "Received message %s from %s (retry %d)",
                context.message_id,
                self.key,
                context.retry_count,
            )

        try:
            with self.tracer.span(
                f"{self.queue_config.descriptor.queue_name} process",
                role=Role.CONSUMER,
                attributes=self._span_attributes(context),
            ):
                self.handler.handle(body, context)
        except Exception as exc:
            self._on_failure(channel, context, exc)
            return

        channel.basic_ack(delivery_tag=context.delivery_tag)
        self.ledger.forget(context.message_id)

    def _on_failure(
        self, channel: BlockingChannel, context: MessageContext, exc: Exception
    ) -> None:
        consume = self.queue_config.consume
        max_retry = consume.effective_max_retry

        if context.retry_count < max_retry:
            self.logger.warning(
                "Handler failed for message %s on %s (retry %d/%d), requeueing: %s",
                context.message_id,
                self.key,
                context.retry_count,
                max_retry,
                exc,
                exc_info=True,
            )
            if consume.retry_delay > 0 and context.stop_event.wait(consume.retry_delay):
                return
            self.ledger.record(context.message_id)
            channel.basic_nack(delivery_tag=context.delivery_tag, requeue=True)
            return

        outcome = "dead-lettering" if self.queue_config.dead_letter.enabled else "discarding"
        self.logger.error(
            "Handler failed for message %s on %s after %d retries, %s: %s",
            context.message_id,
            self.key,
            context.retry_count,
            outcome,
            exc,
            exc_info=True,
        )
        channel.basic_nack(delivery_tag=context.delivery_tag, requeue=False)
        self.ledger.forget(context.message_id)

    def _release(self, channel: Optional[BlockingChannel]) -> None:
        if channel is not None and not channel.is_closed:
            try:
                channel.cancel()
                channel.close()
            except pika.exceptions.AMQPError as exc:
                self.logger.debug("Ignoring error while closing consumer channel for %s: %s", self.key, exc)
        self.connection.close()

    def _span_attributes(self, context: MessageContext) -> Dict[str, Any]:
        descriptor = self.queue_config.descriptor
        attributes: Dict[str, Any] = {
            "messaging.destination.name": descriptor.queue_name,
            "messaging.rabbitmq.destination.routing_key": descriptor.routing_key,
            "messaging.rabbitmq.message.delivery_tag": context.delivery_tag,
            "messaging.message.retry_count": context.retry_count,
        }
        if context.message_id:
            attributes["messaging.message.id"] = context.message_id
        return attributes
