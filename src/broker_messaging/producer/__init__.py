"""Message producers and the registry that shares them."""

from .producer_registry import ProducerRegistry
from .rabbitmq_producer import DEFAULT_PUBLISH_TIMEOUT, Message, RabbitMQProducer
from .retry import send_with_retry

__all__ = [
    "DEFAULT_PUBLISH_TIMEOUT",
    "Message",
    "ProducerRegistry",
    "RabbitMQProducer",
    "send_with_retry",
]
