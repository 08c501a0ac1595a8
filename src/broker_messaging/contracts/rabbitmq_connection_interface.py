"""Defines the contract for RabbitMQ connections."""

from __future__ import annotations

from abc import ABC, abstractmethod
from types import TracebackType
from typing import Optional, Type

from pika.adapters.blocking_connection import BlockingChannel, BlockingConnection


class IRabbitMQConnection(ABC):
    """Owns one lazily dialed broker connection and hands out channels from it."""

    alias: str

    @abstractmethod
    def connect(self) -> BlockingConnection:
        """Return the cached connection, dialing a new one if none is usable."""

    @abstractmethod
    def channel(self) -> BlockingChannel:
        """Open a new channel on the ensured connection."""

    @property
    @abstractmethod
    def is_usable(self) -> bool:
        """Whether a connection is cached and still open."""

    @abstractmethod
    def close(self) -> None:
        """Close the connection and associated resources."""

    @abstractmethod
    def __enter__(self) -> IRabbitMQConnection:
        """Enter a managed connection context."""

    @abstractmethod
    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        """Exit a managed connection context."""
