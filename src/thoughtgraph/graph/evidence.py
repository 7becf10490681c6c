"""
Evidence-weight registry.

Holds one ``EvidenceWeight`` per evidence id. Scoring reads it; stages
and competitions write it. ``snapshot``/``restore`` let scenario
simulation overlay temporary changes.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field

from thoughtgraph.errors import ValidationError

logger = logging.getLogger(__name__)


class EvidenceWeight(BaseModel):
    """Quality profile of one piece of evidence."""

    evidence_id: str
    weight: float = Field(default=0.5, ge=0.0, le=1.0)
    reliability: float = Field(default=0.5, ge=0.0, le=1.0)
    relevance: float = Field(default=0.5, ge=0.0, le=1.0)
    recency: float = Field(default=0.5, ge=0.0, le=1.0)
    source_credibility: float = Field(default=0.5, ge=0.0, le=1.0)
    methodological_quality: float = Field(default=0.5, ge=0.0, le=1.0)

    @property
    def quality(self) -> float:
        """Mean of reliability, methodological quality and source credibility."""
        return (self.reliability + self.methodological_quality + self.source_credibility) / 3


_UPDATABLE = set(EvidenceWeight.model_fields) - {"evidence_id"}


class EvidenceRegistry:
    """Mutable map of evidence id to ``EvidenceWeight``."""

    def __init__(self) -> None:
        self._weights: dict[str, EvidenceWeight] = {}

    def __contains__(self, evidence_id: object) -> bool:
        return evidence_id in self._weights

    def __len__(self) -> int:
        return len(self._weights)

    def get(self, evidence_id: str) -> EvidenceWeight | None:
        return self._weights.get(evidence_id)

    def all(self) -> dict[str, EvidenceWeight]:
        return dict(self._weights)

    def upsert(self, weight: EvidenceWeight) -> None:
        self._weights[weight.evidence_id] = weight

    def discard(self, evidence_ids: set[str]) -> None:
        for evidence_id in evidence_ids:
            self._weights.pop(evidence_id, None)

    def validate_update(self, update: dict[str, dict[str, Any]]) -> list[str]:
        """Return every problem with a partial-assignment update, without applying it."""
        violations: list[str] = []
        for evidence_id, fields in update.items():
            current = self._weights.get(evidence_id)
            if current is None:
                violations.append(f"unknown evidence id {evidence_id}")
                continue
            unknown = sorted(set(fields) - _UPDATABLE)
            if unknown:
                violations.append(f"evidence {evidence_id}: unknown field(s) {', '.join(unknown)}")
                continue
            for name, value in fields.items():
                if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
                    violations.append(f"evidence {evidence_id}: {name}={value!r} outside [0, 1]")
        return violations

    def apply_update(self, update: dict[str, dict[str, Any]]) -> None:
        """
        Assign fields of existing evidence weights.

        Raises:
            ValidationError: If any id or field is invalid; nothing is applied.
        """
        violations = self.validate_update(update)
        if violations:
            raise ValidationError(violations)
        for evidence_id, fields in update.items():
            self._weights[evidence_id] = self._weights[evidence_id].model_copy(update=fields)
        logger.debug(f"Applied evidence update to {len(update)} item(s)")

    def apply_deltas(self, deltas: dict[str, float]) -> None:
        """Add ``deltas`` to evidence weights, clamped to [0, 1]. Unknown ids are created."""
        for evidence_id, delta in deltas.items():
            current = self._weights.get(evidence_id) or EvidenceWeight(evidence_id=evidence_id)
            weight = min(1.0, max(0.0, current.weight + delta))
            self._weights[evidence_id] = current.model_copy(update={"weight": weight})

    def snapshot(self) -> dict[str, EvidenceWeight]:
        # Entries are replaced rather than mutated, so a shallow copy is enough.
        return dict(self._weights)

    def restore(self, snapshot: dict[str, EvidenceWeight]) -> None:
        self._weights = dict(snapshot)
