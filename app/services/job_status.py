from __future__ import annotations

import json
from typing import Any, Callable, Optional, Tuple, Union

from app.services.kv import KeyValueStore

Record = dict[str, Any]
Patch = Union[Record, Callable[[Record], Record]]


def _loads(raw: Optional[str]) -> Record:
    if not raw:
        return {}
    try:
        doc = json.loads(raw)
    except ValueError:
        return {}
    return doc if isinstance(doc, dict) else {}


class JobStatusStore:
    """
    Latest known status per job id, kept past the job's queue lifetime and
    expired by TTL.
    """

    def __init__(self, store: KeyValueStore, key_for: Callable[[str], str], ttl_s: int) -> None:
        self.store = store
        self.key_for = key_for
        self.ttl_s = ttl_s

    def get(self, job_id: str) -> Optional[Record]:
        raw = self.store.get(self.key_for(job_id))
        if raw is None:
            return None
        return _loads(raw)

    def merge(self, job_id: str, patch: Patch) -> Tuple[Record, Record]:
        """
        Shallow-merge a patch onto the stored record and refresh the TTL.
        - Keeps existing keys
        - Overwrites keys present in patch

        ``patch`` may be a callable that builds the patch from the previous
        record (and may raise to abort the write). The read and the write run
        as one atomic update on the store, so a concurrent writer cannot drop
        this writer's fields.

        Returns (previous, merged); previous is ``{}`` when there was no record.
        """
        seen: Record = {}

        def apply(raw: Optional[str]) -> str:
            prev = _loads(raw)
            seen.clear()
            seen.update(prev)
            fields = patch(dict(prev)) if callable(patch) else patch
            merged = dict(prev)
            for k, v in (fields or {}).items():
                merged[k] = v
            merged["id"] = job_id
            return json.dumps(merged, ensure_ascii=False)

        _, new = self.store.update(self.key_for(job_id), apply, ttl_s=self.ttl_s)
        return dict(seen), json.loads(new)

    def delete(self, job_id: str) -> None:
        self.store.delete(self.key_for(job_id))
