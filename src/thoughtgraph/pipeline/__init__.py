"""
Pipeline module: the nine-stage research state machine and the
orchestrator that connects it to hypothesis competition.
"""

from thoughtgraph.pipeline.fanout import Branch, fan_out
from thoughtgraph.pipeline.orchestrator import ResearchOrchestrator
from thoughtgraph.pipeline.schemas import (
    BranchFailure,
    ClusterRanking,
    EvidenceLink,
    QualityAudit,
    ReportSection,
    ResearchContext,
    Stage,
    StageResult,
)
from thoughtgraph.pipeline.stage_engine import StageEngine
from thoughtgraph.pipeline.state import PipelineState

__all__ = [
    "Branch",
    "BranchFailure",
    "ClusterRanking",
    "EvidenceLink",
    "PipelineState",
    "QualityAudit",
    "ReportSection",
    "ResearchContext",
    "ResearchOrchestrator",
    "Stage",
    "StageEngine",
    "StageResult",
    "fan_out",
]
