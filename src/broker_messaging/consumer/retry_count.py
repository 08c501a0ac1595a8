"""Derives how often a delivery has already failed."""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Any, Mapping, Optional

DEFAULT_LEDGER_SIZE = 10_000


def header_retry_count(headers: Optional[Mapping[str, Any]]) -> int:
    """Read the retry count the broker put in the message headers.

    ``x-death`` is present once a message went through a dead-letter exchange;
    quorum queues additionally set ``x-delivery-count``. Malformed headers
    count as zero.
    """
    if not headers:
        return 0

    count = 0
    deaths = headers.get("x-death")
    if isinstance(deaths, (list, tuple)) and deaths:
        first = deaths[0]
        if isinstance(first, Mapping):
            count = max(count, _as_count(first.get("count")))

    return max(count, _as_count(headers.get("x-delivery-count")))


def _as_count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return max(value, 0)


class FailureLedger:
    """Remembers how many times each message id failed on this consumer.

    Classic queues do not count requeues, so the consumer tracks failed
    attempts itself. The oldest entries are evicted once ``max_size`` ids are
    tracked.
    """

    def __init__(self, max_size: int = DEFAULT_LEDGER_SIZE) -> None:
        self.max_size = max_size
        self._failures: OrderedDict[str, int] = OrderedDict()
        self._lock = threading.Lock()

    def failures(self, message_id: Optional[str]) -> int:
        if not message_id:
            return 0
        with self._lock:
            return self._failures.get(message_id, 0)

    def record(self, message_id: Optional[str]) -> int:
        if not message_id:
            return 0
        with self._lock:
            count = self._failures.pop(message_id, 0) + 1
            self._failures[message_id] = count
            while len(self._failures) > self.max_size:
                self._failures.popitem(last=False)
            return count

    def forget(self, message_id: Optional[str]) -> None:
        if not message_id:
            return
        with self._lock:
            self._failures.pop(message_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._failures)


def retry_count(
    headers: Optional[Mapping[str, Any]],
    *,
    redelivered: bool,
    message_id: Optional[str],
    ledger: FailureLedger,
) -> int:
    return max(
        header_retry_count(headers),
        1 if redelivered else 0,
        ledger.failures(message_id),
    )
