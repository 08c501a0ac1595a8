"""Opens channels and idempotently declares the topology behind a queue."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

import pika
from pika.adapters.blocking_connection import BlockingChannel

from broker_messaging.contracts import IRabbitMQConnection
from broker_messaging.errors import DeclareError
from broker_messaging.queue_config import (
    QueueConfig,
    dead_letter_exchange,
    dead_letter_queue,
    dead_letter_routing_key,
)
from broker_messaging.roles import Role

DEAD_LETTER_EXCHANGE_TYPE = "direct"


class ChannelDeclarer:
    """Declares exchange, queue, bindings and QoS for one ``QueueConfig``.

    Producers only get the exchange declared: the queue and its bindings
    belong to the consumer side, so a producer never assumes a queue exists.
    Every declaration is idempotent, so the same channel setup can be replayed
    after a reconnect.
    """

    def __init__(
        self,
        connection: IRabbitMQConnection,
        queue_config: QueueConfig,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.connection = connection
        self.queue_config = queue_config
        self.logger = logger or logging.getLogger(__name__)

    def open_channel(self, role: Role) -> BlockingChannel:
        channel = self.connection.channel()
        try:
            self._declare(channel, role)
        except DeclareError:
            self._discard(channel)
            raise
        self.logger.info("Declared %s channel for %s", role.value, self.queue_config.key)
        return channel

    def _declare(self, channel: BlockingChannel, role: Role) -> None:
        descriptor = self.queue_config.descriptor

        if descriptor.exchange_name:
            self._step(
                "exchange",
                channel.exchange_declare,
                exchange=descriptor.exchange_name,
                exchange_type=descriptor.exchange_type,
                durable=True,
                auto_delete=False,
            )

        if role is Role.CONSUMER:
            self._declare_consumer_side(channel)

        if self.queue_config.publish_confirm.enabled:
            self._step("confirm-mode", channel.confirm_delivery)

    def _declare_consumer_side(self, channel: BlockingChannel) -> None:
        descriptor = self.queue_config.descriptor
        policy = self.queue_config.dead_letter
        arguments: Dict[str, Any] = {}

        if policy.enabled:
            dlx = dead_letter_exchange(descriptor, policy)
            dlq = dead_letter_queue(descriptor, policy)
            dl_routing_key = dead_letter_routing_key(descriptor, policy)
            dlq_arguments: Dict[str, Any] = {}
            if policy.message_ttl > 0:
                dlq_arguments["x-message-ttl"] = policy.message_ttl

            self._step(
                "dead-letter exchange",
                channel.exchange_declare,
                exchange=dlx,
                exchange_type=DEAD_LETTER_EXCHANGE_TYPE,
                durable=True,
                auto_delete=False,
            )
            self._step(
                "dead-letter queue",
                channel.queue_declare,
                queue=dlq,
                durable=True,
                arguments=dlq_arguments or None,
            )
            self._step(
                "dead-letter bind",
                channel.queue_bind,
                queue=dlq,
                exchange=dlx,
                routing_key=dl_routing_key,
            )
            arguments["x-dead-letter-exchange"] = dlx
            arguments["x-dead-letter-routing-key"] = dl_routing_key

        self._step(
            "queue",
            channel.queue_declare,
            queue=descriptor.queue_name,
            durable=True,
            arguments=arguments or None,
        )

        if descriptor.exchange_name:
            self._step(
                "bind",
                channel.queue_bind,
                queue=descriptor.queue_name,
                exchange=descriptor.exchange_name,
                routing_key=descriptor.routing_key,
            )

        self._step(
            "qos",
            channel.basic_qos,
            prefetch_count=self.queue_config.consume.effective_prefetch_count,
            global_qos=False,
        )

    def _step(self, step: str, operation: Callable[..., Any], **kwargs: Any) -> None:
        try:
            operation(**kwargs)
        except pika.exceptions.AMQPError as exc:
            self.logger.error(
                "Failed to declare %s for %s: %s", step, self.queue_config.key, exc
            )
            raise DeclareError(step, self.queue_config.key, exc) from exc

    def _discard(self, channel: BlockingChannel) -> None:
        if channel.is_closed:
            return
        try:
            channel.close()
        except pika.exceptions.AMQPError as exc:
            self.logger.debug("Ignoring error while closing failed channel: %s", exc)
