"""Runs supervised consumers, one thread per queue descriptor."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from broker_messaging.consumer import ConsumerState, FailureLedger, RabbitMQConsumer
from broker_messaging.contracts import IMessageHandler, IRabbitMQConnection
from broker_messaging.dependencies import MessagingDependencies
from broker_messaging.errors import BrokerConfigError, MessagingError
from broker_messaging.handlers import handler_name
from broker_messaging.queue_config import QueueConfig
from broker_messaging.settings import BrokerDirectory, redact_url

DEFAULT_RESTART_DELAY = 5.0


@dataclass
class _Supervised:
    queue_config: QueueConfig
    handler: IMessageHandler
    connection: IRabbitMQConnection
    cancel: threading.Event = field(default_factory=threading.Event)
    ledger: FailureLedger = field(default_factory=FailureLedger)
    thread: Optional[threading.Thread] = None
    consumer: Optional[RabbitMQConsumer] = None
    restarts: int = 0

    @property
    def alive(self) -> bool:
        return self.thread is not None and self.thread.is_alive() and not self.cancel.is_set()


class ConsumerSupervisor:
    """Restarts consumers whose receive loop ends with an error.

    Each supervised descriptor owns a cancel handle that survives restarts,
    so ``stop`` also interrupts the delay between two attempts. A consumer
    is deregistered once its thread exits. Configuration errors are raised
    from ``start`` and never retried.
    """

    def __init__(
        self,
        brokers: BrokerDirectory,
        dependencies: Optional[MessagingDependencies] = None,
        *,
        restart_delay: float = DEFAULT_RESTART_DELAY,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.brokers = brokers
        self.dependencies = dependencies or MessagingDependencies()
        self.restart_delay = restart_delay
        self.logger = logger or logging.getLogger(__name__)
        self._entries: Dict[str, _Supervised] = {}
        self._started: List[threading.Thread] = []
        self._lock = threading.Lock()
        self._closed = threading.Event()

    def start(self, queue_config: QueueConfig, handler: IMessageHandler) -> str:
        """Start consuming ``queue_config`` in a background thread.

        Returns the descriptor key used by ``stop`` and the health checks.
        """
        key = queue_config.key
        if self.is_running(key):
            self.logger.info("Consumer for %s is already running", key)
            return key

        alias = queue_config.descriptor.broker_alias
        url = self.brokers.url(alias)
        try:
            connection = self.dependencies.make_connection(url, alias=alias)
        except ValueError as exc:
            raise BrokerConfigError(str(exc), descriptor=key) from exc

        with self._lock:
            if self._closed.is_set():
                raise MessagingError("Consumer supervisor is shut down", descriptor=key)
            existing = self._entries.get(key)
            if existing is not None and existing.alive:
                self.logger.info("Consumer for %s is already running", key)
                return key
            entry = _Supervised(queue_config=queue_config, handler=handler, connection=connection)
            thread = threading.Thread(
                target=self._supervise,
                args=(entry,),
                name=f"consumer-{queue_config.descriptor.queue_name}",
                daemon=True,
            )
            entry.thread = thread
            self._entries[key] = entry
            self._started = [t for t in self._started if t.ident is None or t.is_alive()]
            self._started.append(thread)

        self.logger.info(
            "Starting consumer for %s on %s with handler %s",
            key,
            redact_url(url),
            handler_name(handler),
        )
        thread.start()
        return key

    def stop(self, key: str) -> None:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return
        entry.cancel.set()
        self.logger.info("Stopping consumer for %s", key)

    def stop_all(self) -> None:
        with self._lock:
            entries = list(self._entries.values())
        for entry in entries:
            entry.cancel.set()
        if entries:
            self.logger.info("Stopping %d consumer(s)", len(entries))

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop every consumer and wait for their threads to finish.

        Threads left over from a consumer that was stopped and started again
        are joined as well.
        """
        self._closed.set()
        self.stop_all()
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in self._threads():
            remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            thread.join(remaining)
            if thread.is_alive():
                self.logger.warning("Consumer thread %s did not stop in time", thread.name)

    def is_running(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
        return entry is not None and entry.alive

    def consumer_state(self, key: str) -> Optional[ConsumerState]:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.consumer is None:
            return ConsumerState.IDLE
        return entry.consumer.state

    def restart_count(self, key: str) -> int:
        with self._lock:
            entry = self._entries.get(key)
        return entry.restarts if entry is not None else 0

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def _threads(self) -> List[threading.Thread]:
        with self._lock:
            return list(self._started)

    def _supervise(self, entry: _Supervised) -> None:
        try:
            self._run_until_stopped(entry)
        finally:
            with self._lock:
                if self._entries.get(entry.queue_config.key) is entry:
                    del self._entries[entry.queue_config.key]

    def _run_until_stopped(self, entry: _Supervised) -> None:
        key = entry.queue_config.key
        while not self._should_stop(entry):
            try:
                consumer = self.dependencies.make_consumer(
                    connection=entry.connection,
                    queue_config=entry.queue_config,
                    handler=entry.handler,
                    tracer=self.dependencies.tracer,
                    ledger=entry.ledger,
                    log_message_content=self.brokers.log_message_content,
                )
                entry.consumer = consumer
                consumer.run(entry.cancel)
            except MessagingError as exc:
                self.logger.error("Consumer for %s stopped: %s", key, exc)
            except Exception:
                self.logger.exception("Consumer for %s crashed", key)
            else:
                if self._should_stop(entry):
                    break

            if entry.cancel.wait(self.restart_delay) or self._should_stop(entry):
                break
            entry.restarts += 1
            self.logger.info("Restarting consumer for %s (attempt %d)", key, entry.restarts)

        self.logger.info("Consumer for %s exited", key)

    def _should_stop(self, entry: _Supervised) -> bool:
        return entry.cancel.is_set() or self._closed.is_set()
