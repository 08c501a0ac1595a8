"""Roles a channel can be opened for."""

from enum import Enum


class Role(str, Enum):
    PRODUCER = "producer"
    CONSUMER = "consumer"
