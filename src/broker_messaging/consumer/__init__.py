"""Queue consumers and retry bookkeeping."""

from .rabbitmq_consumer import ConsumerState, RabbitMQConsumer
from .retry_count import FailureLedger, header_retry_count

__all__ = ["ConsumerState", "RabbitMQConsumer", "FailureLedger", "header_retry_count"]
