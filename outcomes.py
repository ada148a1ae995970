# outcomes.py
from __future__ import annotations

import logging
import threading
from typing import Dict, List

from models import StreamName, StreamOutcome

logger = logging.getLogger(__name__)


class OutcomeCollector:
    """
    Thread-safe, append-only collection of stream outcomes for one request.

    Each stream gets exactly one outcome: the first `record()` for a stream wins
    and later ones are refused. After `close()` nothing more is accepted, so a
    worker finishing after the request timed out cannot change the response.
    """
    def __init__(self):
        self._lock = threading.Lock()
        self._outcomes: List[StreamOutcome] = []
        self._seen: Dict[StreamName, StreamOutcome] = {}
        self._closed = False

    def record(self, outcome: StreamOutcome) -> bool:
        with self._lock:
            if self._closed or outcome.stream_name in self._seen:
                accepted = False
            else:
                self._seen[outcome.stream_name] = outcome
                self._outcomes.append(outcome)
                accepted = True
        if not accepted:
            logger.debug("Dropped late %s outcome (%s)", outcome.stream_name.value, outcome.status.value)
        return accepted

    def has(self, stream_name: StreamName) -> bool:
        with self._lock:
            return stream_name in self._seen

    def close(self) -> List[StreamOutcome]:
        """Stop accepting outcomes and return what was collected, in arrival order"""
        with self._lock:
            self._closed = True
            return list(self._outcomes)

    def snapshot(self) -> List[StreamOutcome]:
        with self._lock:
            return list(self._outcomes)
