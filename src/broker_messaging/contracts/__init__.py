"""Contract interfaces for broker messaging."""

from .message_handler_interface import IMessageHandler, MessageContext
from .rabbitmq_connection_interface import IRabbitMQConnection
from .tracer_interface import ITracer

__all__ = [
    "IMessageHandler",
    "IRabbitMQConnection",
    "ITracer",
    "MessageContext",
]
