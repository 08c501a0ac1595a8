"""Defines the contract for the optional tracing collaborator."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ContextManager, Mapping

from broker_messaging.roles import Role


class ITracer(ABC):
    """Wraps publish and consume operations in spans."""

    @abstractmethod
    def span(self, name: str, *, role: Role, attributes: Mapping[str, Any]) -> ContextManager[None]:
        """Return a context manager covering one messaging operation."""
