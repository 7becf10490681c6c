"""
Competition module: scoring, ranking, evolution and consensus for
competing hypotheses, plus landscape analysis.
"""

from thoughtgraph.competition.engine import HypothesisCompetitionEngine
from thoughtgraph.competition.landscape import (
    ConflictType,
    GapKind,
    HypothesisCluster,
    HypothesisConflict,
    KnowledgeGap,
    LandscapeAnalysis,
    LandscapeAnalyzer,
)
from thoughtgraph.competition.schemas import (
    CRITERIA,
    DEFAULT_WEIGHTS,
    CompetitionResult,
    CompetitionRound,
    ConsensusMechanism,
    ConsensusMechanismType,
    ConsensusResult,
    Criterion,
    EvaluationCriteria,
    EvolutionOutcome,
    Feedback,
    Hypothesis,
    HypothesisEvolution,
    PeerEvaluation,
    PeerReview,
    RegistrationResult,
    Scenario,
    ScenarioOutcome,
    Scope,
)

__all__ = [
    "CRITERIA",
    "DEFAULT_WEIGHTS",
    "CompetitionResult",
    "CompetitionRound",
    "ConflictType",
    "ConsensusMechanism",
    "ConsensusMechanismType",
    "ConsensusResult",
    "Criterion",
    "EvaluationCriteria",
    "EvolutionOutcome",
    "Feedback",
    "GapKind",
    "Hypothesis",
    "HypothesisCluster",
    "HypothesisCompetitionEngine",
    "HypothesisConflict",
    "HypothesisEvolution",
    "KnowledgeGap",
    "LandscapeAnalysis",
    "LandscapeAnalyzer",
    "PeerEvaluation",
    "PeerReview",
    "RegistrationResult",
    "Scenario",
    "ScenarioOutcome",
    "Scope",
]
