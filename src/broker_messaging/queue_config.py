"""Queue identity and the per-queue policies used by producers and consumers."""

from __future__ import annotations

from dataclasses import dataclass, field, replace

EXCHANGE_TYPES = frozenset({"direct", "fanout", "topic", "headers"})
KEY_SEPARATOR = "|"

DEFAULT_PREFETCH_COUNT = 1
DEFAULT_MAX_RETRY = 3


@dataclass(frozen=True)
class QueueDescriptor:
    """Identifies one logical queue on one broker.

    Two descriptors with identical fields describe the same queue and share the
    same ``key``, which is used both as the producer cache key and as the
    correlation id in log records.
    """

    queue_name: str
    exchange_name: str = ""
    exchange_type: str = "direct"
    routing_key: str = ""
    broker_alias: str = ""

    def __post_init__(self) -> None:
        if self.exchange_type not in EXCHANGE_TYPES:
            raise ValueError(
                f"Unsupported exchange type {self.exchange_type!r}; "
                f"expected one of {sorted(EXCHANGE_TYPES)}"
            )

    @property
    def key(self) -> str:
        return KEY_SEPARATOR.join(
            (
                self.broker_alias,
                self.queue_name,
                self.exchange_name,
                self.exchange_type,
                self.routing_key,
            )
        )

    @property
    def publish_routing_key(self) -> str:
        # The default exchange routes by queue name.
        if self.exchange_name:
            return self.routing_key
        return self.routing_key or self.queue_name

    def for_broker(self, alias: str) -> QueueDescriptor:
        return replace(self, broker_alias=alias)

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class DeadLetterPolicy:
    """Dead-letter settings; unset names are derived from the queue descriptor."""

    enabled: bool = False
    exchange: str = ""
    queue_name: str = ""
    routing_key: str = ""
    message_ttl: int = 0


@dataclass(frozen=True)
class ConsumeConfig:
    prefetch_count: int = DEFAULT_PREFETCH_COUNT
    max_retry: int = DEFAULT_MAX_RETRY
    retry_delay: float = 0.0

    @property
    def effective_prefetch_count(self) -> int:
        return self.prefetch_count if self.prefetch_count > 0 else DEFAULT_PREFETCH_COUNT

    @property
    def effective_max_retry(self) -> int:
        return self.max_retry if self.max_retry > 0 else DEFAULT_MAX_RETRY


@dataclass(frozen=True)
class PublishConfirmConfig:
    enabled: bool = False
    timeout: float = 0.0


@dataclass(frozen=True)
class QueueConfig:
    """Bundles a descriptor with the policies applied when declaring it."""

    descriptor: QueueDescriptor
    dead_letter: DeadLetterPolicy = field(default_factory=DeadLetterPolicy)
    consume: ConsumeConfig = field(default_factory=ConsumeConfig)
    publish_confirm: PublishConfirmConfig = field(default_factory=PublishConfirmConfig)

    @property
    def key(self) -> str:
        return self.descriptor.key

    @property
    def producer_key(self) -> str:
        """Registry key; confirm-mode producers are cached apart from plain ones."""
        if self.publish_confirm.enabled:
            return f"{self.key}{KEY_SEPARATOR}confirm"
        return self.key

    def for_broker(self, alias: str) -> QueueConfig:
        return replace(self, descriptor=self.descriptor.for_broker(alias))

    def with_publish_confirm(self, timeout: float) -> QueueConfig:
        return replace(self, publish_confirm=PublishConfirmConfig(enabled=True, timeout=timeout))


def dead_letter_exchange(descriptor: QueueDescriptor, policy: DeadLetterPolicy) -> str:
    if policy.exchange:
        return policy.exchange
    if descriptor.exchange_name:
        return f"{descriptor.exchange_name}.dlx"
    return f"{descriptor.queue_name}.dlx"


def dead_letter_queue(descriptor: QueueDescriptor, policy: DeadLetterPolicy) -> str:
    return policy.queue_name or f"{descriptor.queue_name}.dlq"


def dead_letter_routing_key(descriptor: QueueDescriptor, policy: DeadLetterPolicy) -> str:
    return policy.routing_key or descriptor.routing_key
