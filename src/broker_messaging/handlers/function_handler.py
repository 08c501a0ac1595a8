"""Adapts plain callables to ``IMessageHandler``."""

from __future__ import annotations

import inspect
from typing import Any, Callable

from broker_messaging.contracts import IMessageHandler, MessageContext


class FunctionHandler(IMessageHandler):
    """Wraps ``fn(body)`` or ``fn(body, context)``.

    Callables accepting a single positional argument receive only the body,
    anything else is called with the body and the message context.
    """

    def __init__(self, fn: Callable[..., Any]) -> None:
        self.fn = fn
        self.wants_context = _accepts_context(fn)

    def handle(self, body: bytes, context: MessageContext) -> None:
        if self.wants_context:
            self.fn(body, context)
        else:
            self.fn(body)

    def __repr__(self) -> str:
        return f"FunctionHandler({handler_name(self.fn)})"


def _accepts_context(fn: Callable[..., Any]) -> bool:
    try:
        signature = inspect.signature(fn)
    except (TypeError, ValueError):
        return True

    positional = 0
    for parameter in signature.parameters.values():
        if parameter.kind is inspect.Parameter.VAR_POSITIONAL:
            return True
        if parameter.kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ):
            positional += 1
    return positional >= 2


def as_handler(handler: Any) -> IMessageHandler:
    if isinstance(handler, IMessageHandler):
        return handler
    if callable(handler):
        return FunctionHandler(handler)
    raise TypeError(f"Expected an IMessageHandler or a callable, got {type(handler).__name__}")


def handler_name(handler: Any) -> str:
    """Describe a handler for log records."""
    if isinstance(handler, FunctionHandler):
        return handler_name(handler.fn)
    target = handler if callable(handler) and not isinstance(handler, IMessageHandler) else type(handler)
    module = getattr(target, "__module__", None)
    name = getattr(target, "__qualname__", None) or getattr(target, "__name__", None)
    if name is None:
        return repr(handler)
    return f"{module}.{name}" if module else name
