"""Reliable RabbitMQ messaging: producers, supervised consumers and topology."""

from .connection import RabbitMQConnection
from .consumer import ConsumerState, RabbitMQConsumer
from .contracts import IMessageHandler, IRabbitMQConnection, ITracer, MessageContext
from .dependencies import MessagingDependencies
from .errors import (
    BatchPublishError,
    BrokerConfigError,
    ChannelError,
    ConfirmTimeoutError,
    ConnectError,
    ConsumeError,
    DeclareError,
    HandlerError,
    MessagingError,
    ProducerInitError,
    PublishError,
)
from .handlers import FunctionHandler
from .messaging_service import MessagingService
from .producer import ProducerRegistry, RabbitMQProducer
from .queue_config import (
    ConsumeConfig,
    DeadLetterPolicy,
    PublishConfirmConfig,
    QueueConfig,
    QueueDescriptor,
    dead_letter_exchange,
    dead_letter_queue,
    dead_letter_routing_key,
)
from .roles import Role
from .settings import BrokerDirectory, BrokerSettings
from .supervisor import ConsumerSupervisor
from .tracing import NoOpTracer, OpenTelemetryTracer

__all__ = [
    "BatchPublishError",
    "BrokerConfigError",
    "BrokerDirectory",
    "BrokerSettings",
    "ChannelError",
    "ConfirmTimeoutError",
    "ConnectError",
    "ConsumeConfig",
    "ConsumeError",
    "ConsumerState",
    "ConsumerSupervisor",
    "DeadLetterPolicy",
    "DeclareError",
    "FunctionHandler",
    "HandlerError",
    "IMessageHandler",
    "IRabbitMQConnection",
    "ITracer",
    "MessageContext",
    "MessagingDependencies",
    "MessagingError",
    "MessagingService",
    "NoOpTracer",
    "OpenTelemetryTracer",
    "ProducerInitError",
    "ProducerRegistry",
    "PublishConfirmConfig",
    "PublishError",
    "QueueConfig",
    "QueueDescriptor",
    "RabbitMQConnection",
    "RabbitMQConsumer",
    "RabbitMQProducer",
    "Role",
    "dead_letter_exchange",
    "dead_letter_queue",
    "dead_letter_routing_key",
]
