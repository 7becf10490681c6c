"""
Pydantic schemas for the stage pipeline.

Defines the research context carried between stages and the records each
stage returns.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from thoughtgraph.graph.evidence import EvidenceWeight
from thoughtgraph.graph.store import GraphDelta


def _now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class Stage(int, Enum):
    """The nine ordered stages."""

    INITIALIZATION = 1
    DECOMPOSITION = 2
    HYPOTHESIS_GENERATION = 3
    EVIDENCE_INTEGRATION = 4
    PRUNING_MERGING = 5
    SUBGRAPH_EXTRACTION = 6
    COMPOSITION = 7
    REFLECTION = 8
    FINAL_ANALYSIS = 9

    @property
    def title(self) -> str:
        return self.name.replace("_", " ").title()


REPORT_SECTIONS = [
    "Executive Summary",
    "Methodology",
    "Key Findings",
    "Evidence Analysis",
    "Discussion",
    "Conclusions",
]

QUALITY_ASPECTS = [
    "coherence",
    "scope",
    "methodological rigor",
    "evidence quality",
    "logical consistency",
    "bias",
    "completeness",
]

FINAL_COMPONENTS = [
    "summary",
    "findings",
    "implications",
    "future directions",
    "applications",
    "limitations",
]


class ResearchContext(BaseModel):
    """Research state carried from stage to stage."""

    field: str = Field(default="", description="Primary research field")
    topic: str = Field(default="", description="Research topic or question")
    objectives: list[str] = Field(default_factory=list)
    hypotheses: list[str] = Field(default_factory=list, description="Hypothesis statements so far")
    constraints: list[str] = Field(default_factory=list)
    biases_detected: list[str] = Field(default_factory=list)
    knowledge_gaps: list[str] = Field(default_factory=list)
    prioritized_clusters: list[str] = Field(
        default_factory=list,
        description="Evidence ids flagged high-impact by subgraph extraction",
    )
    report: str = Field(default="", description="Composed report document")
    quality_overall: float | None = Field(default=None, ge=0.0, le=1.0)
    quality_issue_count: int = 0
    final_summary: str = ""


class BranchFailure(BaseModel):
    """A fan-out branch that failed and was recorded instead of raised."""

    stage: int
    item: str = Field(..., description="Dimension, hypothesis, section or aspect that failed")
    error: str


class ClusterRanking(BaseModel):
    """Importance of one evidence cluster (evidence, hypothesis, dimension)."""

    evidence_id: str
    hypothesis_id: str | None = None
    dimension_id: str | None = None
    importance: float = Field(..., ge=0.0, le=1.0)
    high_impact: bool = False
    assessment: str = ""


class ReportSection(BaseModel):
    title: str
    content: str
    failed: bool = False


class QualityAudit(BaseModel):
    aspect: str
    score: float = Field(..., ge=0.0, le=1.0)
    issue: bool
    notes: str = ""
    failed: bool = False


class StageResult(BaseModel):
    """What one stage returns to its caller."""

    stage: Stage
    delta: GraphDelta = Field(default_factory=GraphDelta)
    context: ResearchContext
    narrative: str
    failures: list[BranchFailure] = Field(default_factory=list)
    artifacts: dict[str, Any] = Field(
        default_factory=dict,
        description="Stage-specific outputs such as rankings, sections or audits",
    )
    completed_at: datetime = Field(default_factory=_now_utc)


class EvidenceLink(BaseModel):
    """An evidence node produced for a hypothesis, with its derived weight."""

    evidence_id: str
    hypothesis_id: str
    supporting: bool = True
    weight: EvidenceWeight
    failed: bool = False
