"""
Append-only log of closed training sessions, optionally mirrored to JSONL.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from .session import SessionRecord

logger = logging.getLogger(__name__)


class TrainingHistory:
    """Records are only ever appended; earlier entries are never rewritten."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else None
        self._records: List[SessionRecord] = []
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._records.extend(self._load())

    def _load(self) -> List[SessionRecord]:
        if self.path is None or not self.path.exists():
            return []
        records = []
        with self.path.open("r", encoding="utf-8") as fh:
            for line_no, line in enumerate(fh, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(SessionRecord.from_dict(json.loads(line)))
                except (ValueError, KeyError) as e:
                    logger.warning(f"Skipping malformed history line {line_no}: {e}")
        return records

    def append(self, record: SessionRecord) -> SessionRecord:
        self._records.append(record)
        if self.path is not None:
            try:
                with self.path.open("a", encoding="utf-8") as fh:
                    fh.write(json.dumps(record.to_dict(), default=float) + "\n")
            except OSError as e:
                logger.warning(f"History not persisted for {record.session_id}: {e}")
        return record

    @property
    def records(self) -> Sequence[SessionRecord]:
        return tuple(self._records)

    def last(self) -> Optional[SessionRecord]:
        return self._records[-1] if self._records else None

    def successes(self) -> int:
        return sum(1 for r in self._records if r.success)

    def failures(self) -> int:
        return sum(1 for r in self._records if not r.success)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[SessionRecord]:
        return iter(tuple(self._records))
