"""
Sensitive-content filter applied before samples enter the training queue.

The guard serialises a feature payload and rejects it when any sensitive
pattern appears. A miss is a known limitation; a false positive silently
drops the sample, so data never half-enters the system.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Pattern

import numpy as np


def _default_patterns() -> List[Pattern[str]]:
    return [
        re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"),          # payment card
        re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),                              # national id
        re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),  # e-mail
    ]


@dataclass
class PrivacyGuardConfig:
    """Configuration for PrivacyGuard."""
    patterns: List[Pattern[str]] = field(default_factory=_default_patterns)


def _compact_float(value: float) -> Any:
    # Integral values keep every digit; fractions are cut to 6 decimals so
    # float noise cannot form long digit runs.
    if value.is_integer():
        return int(value)
    return round(value, 6)


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        return _to_jsonable(value.tolist())
    if isinstance(value, bool):
        return value
    if isinstance(value, (np.integer,)):
        return int(value)
    if isinstance(value, (float, np.floating)):
        return _compact_float(float(value))
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, dict):
        return {str(k): _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_to_jsonable(v) for v in value]
    return value


class PrivacyGuard:
    """Pure predicate over a sample's serialised form."""

    def __init__(self, config: Optional[PrivacyGuardConfig] = None):
        self.config = config or PrivacyGuardConfig()

    @staticmethod
    def serialise(features: Any) -> str:
        return json.dumps(_to_jsonable(features), default=str)

    def is_data_safe(self, features: Any) -> bool:
        """Return False if the serialised features match any sensitive pattern."""
        text = self.serialise(features)
        return not any(pattern.search(text) for pattern in self.config.patterns)
