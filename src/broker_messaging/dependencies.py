"""Factories used to wire producers and consumers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from broker_messaging.connection import RabbitMQConnection
from broker_messaging.consumer import RabbitMQConsumer
from broker_messaging.contracts import IRabbitMQConnection, ITracer
from broker_messaging.producer import RabbitMQProducer
from broker_messaging.tracing import NoOpTracer


@dataclass(frozen=True)
class MessagingDependencies:
    """Bundles factory functions and defaults for producer and consumer wiring.

    ``make_connection`` is called as ``make_connection(url, alias=alias)``;
    ``make_producer`` and ``make_consumer`` receive keyword arguments matching
    the ``RabbitMQProducer`` and ``RabbitMQConsumer`` constructors.
    """

    make_connection: Callable[..., IRabbitMQConnection] = field(default=RabbitMQConnection)
    make_producer: Callable[..., RabbitMQProducer] = field(default=RabbitMQProducer)
    make_consumer: Callable[..., RabbitMQConsumer] = field(default=RabbitMQConsumer)
    tracer: ITracer = field(default_factory=NoOpTracer)
