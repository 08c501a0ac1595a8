"""Keeps consumers running across connection failures."""

from .consumer_supervisor import DEFAULT_RESTART_DELAY, ConsumerSupervisor

__all__ = ["ConsumerSupervisor", "DEFAULT_RESTART_DELAY"]
