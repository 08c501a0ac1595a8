"""Process-wide cache of producers, one per queue descriptor."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional

from broker_messaging.errors import BrokerConfigError, MessagingError, ProducerInitError
from broker_messaging.queue_config import QueueConfig

from .rabbitmq_producer import RabbitMQProducer

ProducerFactory = Callable[[QueueConfig, str], RabbitMQProducer]


class ProducerRegistry:
    """Hands out at most one live producer per descriptor and confirm mode.

    Lookups are served from the cache under a lock. On a miss the producer is
    built and its channel declared outside the lock, then inserted only if no
    other caller got there first; a losing instance is closed and the winner
    returned, so concurrent callers always share one producer.
    """

    def __init__(
        self,
        producer_factory: ProducerFactory,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._producer_factory = producer_factory
        self._producers: Dict[str, RabbitMQProducer] = {}
        self._lock = threading.Lock()
        self.logger = logger or logging.getLogger(__name__)

    def get_or_create(self, queue_config: QueueConfig, connection_url: str) -> RabbitMQProducer:
        key = queue_config.producer_key
        with self._lock:
            existing = self._producers.get(key)
        if existing is not None:
            return existing

        try:
            producer = self._producer_factory(queue_config, connection_url)
            producer.open()
        except BrokerConfigError:
            raise
        except MessagingError as exc:
            self.logger.error("Failed to initialise producer for %s: %s", key, exc)
            raise ProducerInitError(f"Failed to initialise producer: {exc}", descriptor=key) from exc

        with self._lock:
            winner = self._producers.setdefault(key, producer)

        if winner is not producer:
            producer.close()
            return winner

        self.logger.info("Initialised producer for %s", key)
        return producer

    def get(self, key: str) -> Optional[RabbitMQProducer]:
        with self._lock:
            return self._producers.get(key)

    def remove(self, key: str) -> None:
        with self._lock:
            producer = self._producers.pop(key, None)
        if producer is not None:
            producer.close()
            self.logger.info("Closed producer for %s", key)

    def close_all(self) -> None:
        with self._lock:
            producers: List[RabbitMQProducer] = list(self._producers.values())
            self._producers.clear()
        for producer in producers:
            producer.close()
            self.logger.info("Closed producer for %s", producer.key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._producers)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._producers
