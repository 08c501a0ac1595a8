"""Defines the contract for handling consumed messages."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from broker_messaging.queue_config import QueueDescriptor


@dataclass(frozen=True)
class MessageContext:
    """Broker metadata delivered alongside a message body."""

    descriptor: QueueDescriptor
    delivery_tag: int
    redelivered: bool = False
    retry_count: int = 0
    message_id: Optional[str] = None
    headers: Dict[str, Any] = field(default_factory=dict)
    stop_event: threading.Event = field(default_factory=threading.Event)

    @property
    def cancelled(self) -> bool:
        return self.stop_event.is_set()


class IMessageHandler(ABC):
    """Processes one delivered message.

    Returning normally acknowledges the message. Raising any exception (by
    convention ``HandlerError``) marks the delivery as failed and lets the
    consumer decide between requeue and dead-lettering. Redeliveries are a
    normal outcome, so implementations must tolerate seeing a message twice.
    """

    @abstractmethod
    def handle(self, body: bytes, context: MessageContext) -> None:
        """Process a message body."""
