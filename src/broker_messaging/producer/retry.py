"""Retrying wrapper around producer operations."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from broker_messaging.errors import BrokerConfigError, MessagingError, PublishError

from .rabbitmq_producer import RabbitMQProducer

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_INTERVAL = 0.1

logger = logging.getLogger(__name__)


def send_with_retry(
    obtain_producer: Callable[[], RabbitMQProducer],
    operation: Callable[[RabbitMQProducer], None],
    *,
    key: str,
    max_retries: int = DEFAULT_MAX_RETRIES,
    retry_interval: float = DEFAULT_RETRY_INTERVAL,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Run ``operation`` on a producer, retrying ``max_retries`` times.

    Each attempt obtains the producer again, so a producer whose
    initialisation failed is rebuilt on the next attempt. A failed publish,
    including a failure to reopen the producer's channel, closes the channel,
    which forces the topology to be declared again before the next attempt.
    Configuration errors and errors outside the messaging hierarchy are not
    retried.
    """
    last_error: Optional[MessagingError] = None

    for attempt in range(max_retries + 1):
        if attempt > 0:
            sleep(retry_interval)
            logger.info("Retrying send to %s, attempt %d/%d", key, attempt, max_retries)

        try:
            producer = obtain_producer()
        except BrokerConfigError:
            raise
        except MessagingError as exc:
            last_error = exc
            logger.warning("Producer for %s unavailable: %s", key, exc)
            continue

        try:
            operation(producer)
        except BrokerConfigError:
            raise
        except MessagingError as exc:
            last_error = exc
            logger.warning("Publish to %s failed: %s", key, exc)
            producer.close_channel()
            continue
        return

    raise PublishError(
        f"Send failed after {max_retries} retries: {last_error}", descriptor=key
    ) from last_error
