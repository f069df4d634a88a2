"""Append-only audit journal of executor invocations.

Contract:
    - append() MUST succeed or raise (no silent drops)
    - The executor treats audit failures as best-effort: they are
      logged and never change an invocation's outcome
    - read() returns all entries for a correlation_id
    - Entries are immutable after append
    - No delete/update operations exist
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from policy_pipeline.core.ids import new_id, payload_hash, utc_now

logger = logging.getLogger(__name__)


class AuditEntry(BaseModel):
    """Single entry in the append-only audit log."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utc_now)
    correlation_id: str = ""
    command_id: str = ""
    actor_id: str = ""

    event_type: str  # "execution_completed", "policy_evaluated", ...
    payload: dict[str, Any] = Field(default_factory=dict)
    payload_hash: str = ""

    @model_validator(mode="after")
    def _hash_payload(self) -> AuditEntry:
        if not self.payload_hash:
            object.__setattr__(self, "payload_hash", payload_hash(self.payload))
        return self


class AuditLog:
    """Append-only audit journal, optionally mirrored to a JSONL file."""

    def __init__(
        self,
        persist_path: str | None = None,
        max_memory_entries: int = 100_000,
    ) -> None:
        self._entries: list[AuditEntry] = []
        self._by_correlation: dict[str, list[AuditEntry]] = defaultdict(list)
        self._persist_path = persist_path
        self._max = max_memory_entries
        self._available = True

    async def append(self, entry: AuditEntry) -> None:
        """Append an audit entry.

        Raises:
            RuntimeError: If the audit log is unavailable or persistence fails.
        """
        if not self._available:
            raise RuntimeError("AuditLog is unavailable")

        if self._persist_path:
            try:
                path = Path(self._persist_path)
                path.parent.mkdir(parents=True, exist_ok=True)
                with path.open("a") as f:
                    f.write(json.dumps(entry.model_dump(mode="json"), default=str) + "\n")
            except OSError as exc:
                self._available = False
                raise RuntimeError(f"AuditLog persistence failed: {exc}") from exc

        self._entries.append(entry)
        self._by_correlation[entry.correlation_id].append(entry)

        # Memory cap: evict oldest entries
        if len(self._entries) > self._max:
            evicted = self._entries[: -self._max]
            self._entries = self._entries[-self._max :]
            for old in evicted:
                bucket = self._by_correlation.get(old.correlation_id)
                if bucket and bucket[0] is old:
                    bucket.pop(0)
                if not bucket:
                    self._by_correlation.pop(old.correlation_id, None)

    def read(self, correlation_id: str) -> list[AuditEntry]:
        """Read all entries for a correlation_id (the full command chain)."""
        return list(self._by_correlation.get(correlation_id, []))

    @property
    def entries(self) -> list[AuditEntry]:
        return list(self._entries)

    @property
    def entry_count(self) -> int:
        return len(self._entries)

    @property
    def is_available(self) -> bool:
        return self._available

    def set_available(self, available: bool) -> None:
        """Toggle availability. Primary use: testing."""
        self._available = available
