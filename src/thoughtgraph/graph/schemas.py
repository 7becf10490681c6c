"""
Pydantic schemas for the typed knowledge graph.

Nodes carry a multi-component confidence vector; edges carry a scalar
confidence. Well-known stage annotations live in a fixed metadata struct,
anything else goes into its ``extra`` side-table.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

import numpy as np
from pydantic import BaseModel, Field, field_validator


def _now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


# Default confidence axes, in vector order.
CONFIDENCE_AXES = (
    "empirical_support",
    "theoretical_basis",
    "methodological_rigor",
    "consensus_alignment",
)


class NodeType(str, Enum):
    """Kinds of vertices in the research graph."""

    ROOT = "root"
    DIMENSION = "dimension"
    HYPOTHESIS = "hypothesis"
    EVIDENCE = "evidence"
    SYNTHESIS = "synthesis"
    KNOWLEDGE = "knowledge"


class EdgeType(str, Enum):
    """Relationship kinds between graph nodes."""

    SUPPORTIVE = "supportive"
    CONTRADICTORY = "contradictory"
    CORRELATIVE = "correlative"
    CAUSAL_DIRECT = "causal_direct"
    CAUSAL_COUNTERFACTUAL = "causal_counterfactual"
    CAUSAL_CONFOUNDED = "causal_confounded"
    TEMPORAL_PRECEDENCE = "temporal_precedence"
    TEMPORAL_SEQUENTIAL = "temporal_sequential"
    PREREQUISITE = "prerequisite"


class NodeMetadata(BaseModel):
    """Stage annotations attached to a node."""

    source_description: str = Field(default="", description="Where the node's content came from")
    value: str = Field(default="", description="Primary textual content of the node")
    notes: str = Field(default="", description="Free-text notes")
    impact_score: float | None = Field(default=None, ge=0.0, le=1.0, description="Estimated impact")
    parent_dimension: str | None = Field(default=None, description="Originating dimension node id")
    parent_hypothesis: str | None = Field(default=None, description="Hypothesis node id for evidence")
    falsification_criteria: str = Field(default="", description="How the hypothesis could be refuted")
    disciplinary_tags: list[str] = Field(default_factory=list, description="Domain tags")
    pruned: bool = Field(default=False, description="Node was removed by pruning")
    merged_into: str | None = Field(default=None, description="Target id if merged away")
    merged_from: list[str] = Field(default_factory=list, description="Ids merged into this node")
    timestamp: datetime = Field(default_factory=_now_utc)
    extra: dict[str, Any] = Field(default_factory=dict, description="Open side-table")

    def union(self, other: NodeMetadata) -> NodeMetadata:
        """Combine another node's annotations into a copy of this one.

        Scalar fields already set here win; list fields and ``extra`` are
        unioned, with this node's keys taking precedence.
        """
        tags = list(dict.fromkeys(self.disciplinary_tags + other.disciplinary_tags))
        notes = "\n".join(n for n in (self.notes, other.notes) if n)
        impact_candidates = [s for s in (self.impact_score, other.impact_score) if s is not None]
        return self.model_copy(
            update={
                "source_description": self.source_description or other.source_description,
                "value": self.value or other.value,
                "notes": notes,
                "impact_score": max(impact_candidates) if impact_candidates else None,
                "falsification_criteria": self.falsification_criteria or other.falsification_criteria,
                "disciplinary_tags": tags,
                "extra": {**other.extra, **self.extra},
            }
        )


class GraphNode(BaseModel):
    """A vertex in the research graph."""

    id: str = Field(..., description="Stage-scoped identifier, e.g. '3.2.1'")
    label: str = Field(..., description="Short human-readable label")
    type: NodeType
    confidence: list[float] = Field(
        default_factory=lambda: [0.5] * len(CONFIDENCE_AXES),
        description="Independent quality components in [0, 1]",
    )
    metadata: NodeMetadata = Field(default_factory=NodeMetadata)

    @field_validator("confidence")
    @classmethod
    def _check_components(cls, value: list[float]) -> list[float]:
        if not value:
            raise ValueError("confidence vector must not be empty")
        for component in value:
            if not 0.0 <= component <= 1.0:
                raise ValueError(f"confidence component {component} outside [0, 1]")
        return value

    @property
    def mean_confidence(self) -> float:
        """Scalar view of the confidence vector."""
        return mean_confidence(self)


class GraphEdge(BaseModel):
    """A directed, typed connection between two nodes."""

    id: str
    source: str
    target: str
    type: EdgeType
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    metadata: dict[str, Any] = Field(default_factory=dict)


class GraphSnapshot(BaseModel):
    """Read-only export of the graph for rendering or persistence."""

    stage: int = Field(default=0, description="Last completed stage")
    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)
    pruned: list[GraphNode] = Field(default_factory=list)

    def node_confidence(self) -> dict[str, float]:
        return {node.id: mean_confidence(node) for node in self.nodes}


def mean_confidence(node: GraphNode) -> float:
    """Arithmetic mean of a node's confidence components."""
    if not node.confidence:
        return 0.0
    return float(np.mean(node.confidence))
