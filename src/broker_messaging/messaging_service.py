"""Application-facing send API and messaging lifecycle."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

from broker_messaging.contracts import IMessageHandler
from broker_messaging.dependencies import MessagingDependencies
from broker_messaging.errors import BrokerConfigError, MessagingError, PublishError
from broker_messaging.handlers import as_handler
from broker_messaging.producer import Message, ProducerRegistry, RabbitMQProducer, send_with_retry
from broker_messaging.producer.retry import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_INTERVAL
from broker_messaging.queue_config import QueueConfig
from broker_messaging.settings import DEFAULT_ALIAS, BrokerDirectory
from broker_messaging.supervisor import ConsumerSupervisor

DEFAULT_BROKERS: Tuple[str, ...] = (DEFAULT_ALIAS,)

ConsumerBinding = Tuple[QueueConfig, Any]


class MessagingService:
    """Owns the producer registry and the consumer supervisor.

    Every send is fanned out to the requested broker aliases independently:
    the call succeeds when at least one broker accepted the message(s) and
    raises ``PublishError`` chained to the last failure when none did.
    """

    def __init__(
        self,
        brokers: BrokerDirectory,
        *,
        dependencies: Optional[MessagingDependencies] = None,
        registry: Optional[ProducerRegistry] = None,
        supervisor: Optional[ConsumerSupervisor] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.brokers = brokers
        self.dependencies = dependencies or MessagingDependencies()
        self.registry = registry or ProducerRegistry(self._build_producer, logger=self.logger)
        self.supervisor = supervisor or ConsumerSupervisor(brokers, self.dependencies)
        self.max_retries = max_retries
        self.retry_interval = retry_interval

    @classmethod
    def from_env(cls, **kwargs: Any) -> MessagingService:
        return cls(BrokerDirectory.from_env(), **kwargs)

    def send(
        self,
        queue_config: QueueConfig,
        message: Message,
        brokers: Sequence[str] = DEFAULT_BROKERS,
    ) -> None:
        self._log_content(queue_config, message)
        self._fan_out(
            queue_config,
            brokers,
            lambda producer: producer.publish(message),
            retry=True,
        )

    def send_with_confirm(
        self,
        queue_config: QueueConfig,
        message: Message,
        confirm_timeout: float,
        brokers: Sequence[str] = DEFAULT_BROKERS,
    ) -> None:
        """Send with publisher confirms enabled for ``confirm_timeout`` seconds."""
        self._log_content(queue_config, message)
        self._fan_out(
            queue_config.with_publish_confirm(confirm_timeout),
            brokers,
            lambda producer: producer.publish(message, confirm_timeout),
            retry=True,
        )

    def send_batch(
        self,
        queue_config: QueueConfig,
        messages: Optional[Sequence[Message]],
        brokers: Sequence[str] = DEFAULT_BROKERS,
        *,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Publish ``messages`` in order to every broker; batches are not retried."""
        if not messages:
            return
        self._fan_out(
            queue_config,
            brokers,
            lambda producer: producer.publish_batch(messages, timeout, cancel_event=cancel_event),
            retry=False,
        )

    def warm_producers(self, queue_configs: Iterable[QueueConfig]) -> int:
        """Initialise producers ahead of the first send; returns how many are ready."""
        ready = 0
        for queue_config in queue_configs:
            try:
                self._producer_for(queue_config)
            except MessagingError as exc:
                self.logger.error("Failed to pre-initialise producer for %s: %s", queue_config.key, exc)
                continue
            ready += 1
        self.logger.info("Pre-initialised %d producer(s)", ready)
        return ready

    def start_consumers(self, bindings: Iterable[ConsumerBinding]) -> List[str]:
        """Start a supervised consumer for every ``(queue_config, handler)`` pair.

        Handlers may be ``IMessageHandler`` instances or plain callables.
        """
        keys = []
        for queue_config, handler in bindings:
            keys.append(self.supervisor.start(queue_config, as_handler(handler)))
        return keys

    def start_consumer(self, queue_config: QueueConfig, handler: Any) -> str:
        return self.supervisor.start(queue_config, as_handler(handler))

    def stop_consumer(self, key: str) -> None:
        self.supervisor.stop(key)

    def close(self, timeout: Optional[float] = None) -> None:
        self.supervisor.shutdown(timeout)
        self.registry.close_all()
        self.logger.info("Messaging service closed")

    def __enter__(self) -> MessagingService:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _build_producer(self, queue_config: QueueConfig, connection_url: str) -> RabbitMQProducer:
        alias = queue_config.descriptor.broker_alias
        try:
            connection = self.dependencies.make_connection(connection_url, alias=alias)
        except ValueError as exc:
            raise BrokerConfigError(str(exc), descriptor=queue_config.key) from exc
        return self.dependencies.make_producer(
            connection=connection,
            queue_config=queue_config,
            tracer=self.dependencies.tracer,
        )

    def _producer_for(self, queue_config: QueueConfig) -> RabbitMQProducer:
        url = self.brokers.url(queue_config.descriptor.broker_alias)
        return self.registry.get_or_create(queue_config, url)

    def _fan_out(
        self,
        queue_config: QueueConfig,
        brokers: Sequence[str],
        operation: Callable[[RabbitMQProducer], None],
        *,
        retry: bool,
    ) -> None:
        aliases = list(brokers) or list(DEFAULT_BROKERS)
        last_error: Optional[MessagingError] = None
        failed: List[str] = []

        for alias in aliases:
            target = queue_config.for_broker(alias)
            try:
                url = self.brokers.url(alias)
                if retry:
                    send_with_retry(
                        lambda: self.registry.get_or_create(target, url),
                        operation,
                        key=target.key,
                        max_retries=self.max_retries,
                        retry_interval=self.retry_interval,
                    )
                else:
                    operation(self.registry.get_or_create(target, url))
            except MessagingError as exc:
                last_error = exc
                failed.append(alias)
                self.logger.error("Send to %s failed: %s", target.key, exc)
                continue
            self.logger.info("Sent to %s", target.key)

        if len(failed) == len(aliases):
            raise PublishError(
                f"Send failed on all {len(aliases)} broker(s): {last_error}",
                descriptor=queue_config.key,
            ) from last_error
        if failed:
            self.logger.warning(
                "Send to %s succeeded on %d of %d broker(s); failed: %s",
                queue_config.descriptor.queue_name,
                len(aliases) - len(failed),
                len(aliases),
                failed,
            )

    def _log_content(self, queue_config: QueueConfig, message: Message) -> None:
        if self.brokers.log_message_content:
            self.logger.info("Sending to %s: %r", queue_config.descriptor.queue_name, message)
