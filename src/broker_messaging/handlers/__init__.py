"""Adapters turning callables into message handlers."""

from .function_handler import FunctionHandler, as_handler, handler_name

__all__ = ["FunctionHandler", "as_handler", "handler_name"]
