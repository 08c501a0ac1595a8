"""Exception hierarchy for the messaging layer.

Low-level ``pika`` errors never leave the package; they are chained into one of
the classes below so callers only need to know about ``MessagingError``.
"""

from __future__ import annotations

from typing import List, Optional, Sequence


class MessagingError(Exception):
    """Base class for every error raised by broker_messaging."""

    def __init__(self, message: str, *, descriptor: Optional[str] = None) -> None:
        self.message = message
        self.descriptor = descriptor
        super().__init__(message)

    def __str__(self) -> str:
        if self.descriptor:
            return f"{self.message} (queue: {self.descriptor})"
        return self.message


class BrokerConfigError(MessagingError):
    """A broker alias could not be resolved to a connection string."""


class ConnectError(MessagingError):
    """Dialing or authenticating against the broker failed."""


class ChannelError(MessagingError):
    """A channel could not be opened on an established connection."""


class DeclareError(MessagingError):
    """A topology step (exchange, queue, bind, QoS, confirm mode) failed."""

    def __init__(self, step: str, descriptor: str, cause: Optional[BaseException] = None) -> None:
        self.step = step
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Failed to declare {step}{detail}", descriptor=descriptor)


class PublishError(MessagingError):
    """The broker rejected a message or it could not be sent in time."""


class ConfirmTimeoutError(PublishError):
    """No publisher confirm arrived before the deadline."""


class BatchPublishError(PublishError):
    """Some messages of a batch were not published."""

    def __init__(
        self,
        failed_indices: Sequence[int],
        first_error: Optional[BaseException],
        *,
        descriptor: Optional[str] = None,
    ) -> None:
        self.failed_indices: List[int] = list(failed_indices)
        self.first_error = first_error
        super().__init__(
            f"Failed to publish {len(self.failed_indices)} message(s) at indices "
            f"{self.failed_indices}: {first_error}",
            descriptor=descriptor,
        )


class ConsumeError(MessagingError):
    """The receive loop ended because the channel or consumer was closed."""


class HandlerError(MessagingError):
    """Raised by message handlers to report a failed delivery."""


class ProducerInitError(MessagingError):
    """The producer registry could not build a producer."""
