from __future__ import annotations

import json
import logging
from typing import Any, Optional

from app.services.kv import KeyValueStore

logger = logging.getLogger(__name__)


class JobQueue:
    """
    FIFO hand-off for one product family.

    Producers LPUSH, consumers RPOP, so the oldest item is served first.
    Every producer and consumer of ``key`` must keep to that direction.
    """

    def __init__(self, store: KeyValueStore, key: str) -> None:
        self.store = store
        self.key = key

    def enqueue(self, job: dict[str, Any]) -> int:
        return self.store.lpush(self.key, json.dumps(job, ensure_ascii=False))

    def dequeue(self) -> Optional[dict[str, Any]]:
        """Atomically remove the oldest job; ``None`` when the queue is empty."""
        while True:
            raw = self.store.rpop(self.key)
            if raw is None:
                return None
            try:
                job = json.loads(raw)
            except ValueError:
                logger.warning("dropping unparseable queue item on %s: %.80s", self.key, raw)
                continue
            if isinstance(job, dict):
                return job
            logger.warning("dropping non-object queue item on %s", self.key)

    def requeue(self, job: dict[str, Any]) -> int:
        """Hand a popped job back to the consuming end so it keeps its place."""
        return self.store.rpush(self.key, json.dumps(job, ensure_ascii=False))

    def length(self) -> int:
        return self.store.llen(self.key)

    def peek_tail(self, n: int = 5) -> list[dict[str, Any]]:
        """Up to ``n`` jobs next in line, next-to-serve first. Read-only."""
        if n <= 0:
            return []
        out: list[dict[str, Any]] = []
        for raw in reversed(self.store.lrange(self.key, -n, -1)):
            try:
                out.append(json.loads(raw))
            except ValueError:
                out.append({"raw": raw[:80]})
        return out
