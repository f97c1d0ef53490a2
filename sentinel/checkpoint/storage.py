"""
Filesystem persistence for checkpoints.

A checkpoint is stored as a pair: an ``.npz`` archive with every array and
a JSON manifest with scalars and JSON-able component state. Both are written
to temporary files and moved into place with ``os.replace``; a shared token
ties the two halves together so a torn write is detected on load. The
previous pair is copied to ``backups/`` before being replaced, and old
backups are pruned beyond the retention count.
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from sentinel.errors import CheckpointError

logger = logging.getLogger(__name__)

TOKEN_KEY = "__token__"


@dataclass
class CheckpointStorageConfig:
    """Configuration for CheckpointStorage."""
    root: Path = Path("artifacts/checkpoints")
    stem: str = "checkpoint"
    retention: int = 5


class CheckpointStorage:
    """Reads and writes checkpoint payloads under ``config.root``."""

    def __init__(self, config: Optional[CheckpointStorageConfig] = None):
        self.config = config or CheckpointStorageConfig()
        self.root = Path(self.config.root)
        self.root.mkdir(parents=True, exist_ok=True)
        (self.root / "backups").mkdir(exist_ok=True)

    @property
    def arrays_path(self) -> Path:
        return self.root / f"{self.config.stem}.npz"

    @property
    def manifest_path(self) -> Path:
        return self.root / f"{self.config.stem}.json"

    def save(self, arrays: Dict[str, np.ndarray], manifest: Dict[str, Any]) -> Path:
        """
        Persist one checkpoint, replacing the current pair.

        Raises:
            CheckpointError: if the payload cannot be written.
        """
        token = uuid.uuid4().hex
        payload = dict(arrays)
        payload[TOKEN_KEY] = np.array(token)
        manifest = dict(manifest, token=token)

        self._backup()
        tmp_arrays = self.arrays_path.with_suffix(".npz.tmp")
        tmp_manifest = self.manifest_path.with_suffix(".json.tmp")
        try:
            with tmp_arrays.open("wb") as fh:
                np.savez(fh, **payload)
            with tmp_manifest.open("w", encoding="utf-8") as fh:
                json.dump(manifest, fh, indent=2, sort_keys=True)
            os.replace(tmp_arrays, self.arrays_path)
            os.replace(tmp_manifest, self.manifest_path)
        except (OSError, TypeError, ValueError) as e:
            tmp_arrays.unlink(missing_ok=True)
            tmp_manifest.unlink(missing_ok=True)
            raise CheckpointError(f"Failed to persist checkpoint: {e}") from e
        return self.manifest_path

    def load_latest(self) -> Optional[Tuple[Dict[str, np.ndarray], Dict[str, Any]]]:
        """
        Load the newest intact checkpoint, falling back to backups.

        Returns:
            (arrays, manifest), or None when nothing intact is stored.
        """
        for arrays_path, manifest_path in self._candidates():
            try:
                return self._load_pair(arrays_path, manifest_path)
            except (OSError, ValueError, KeyError, CheckpointError) as e:
                logger.warning(f"Skipping unreadable checkpoint {manifest_path.name}: {e}")
        return None

    def _candidates(self) -> List[Tuple[Path, Path]]:
        pairs = [(self.arrays_path, self.manifest_path)]
        backups = sorted(
            (self.root / "backups").glob(f"{self.config.stem}_*.json"),
            key=lambda p: p.stat().st_mtime,
            reverse=True,
        )
        pairs.extend((p.with_suffix(".npz"), p) for p in backups)
        return [(a, m) for a, m in pairs if a.exists() and m.exists()]

    @staticmethod
    def _load_pair(arrays_path: Path, manifest_path: Path):
        with manifest_path.open("r", encoding="utf-8") as fh:
            manifest = json.load(fh)
        with np.load(arrays_path, allow_pickle=False) as archive:
            arrays = {key: archive[key] for key in archive.files}
        token = str(arrays.pop(TOKEN_KEY, ""))
        if token != manifest.get("token"):
            raise CheckpointError("array archive and manifest do not match")
        return arrays, manifest

    def _backup(self) -> None:
        """Copy the current pair into backups/ and prune beyond retention."""
        if not (self.arrays_path.exists() and self.manifest_path.exists()):
            return
        backup_dir = self.root / "backups"
        stamp = f"{self.config.stem}_{int(time.time() * 1000)}"
        (backup_dir / f"{stamp}.npz").write_bytes(self.arrays_path.read_bytes())
        (backup_dir / f"{stamp}.json").write_bytes(self.manifest_path.read_bytes())
        manifests = sorted(
            backup_dir.glob(f"{self.config.stem}_*.json"), key=lambda p: p.stat().st_mtime, reverse=True
        )
        for old in manifests[self.config.retention :]:
            old.unlink(missing_ok=True)
            old.with_suffix(".npz").unlink(missing_ok=True)
