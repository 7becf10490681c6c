"""
Pydantic schemas for the hypothesis competition engine.

Defines hypotheses, evaluation criteria, competition records, evolution
history, consensus and simulation results.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from thoughtgraph.errors import ValidationError


def _now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class Criterion(str, Enum):
    """Axes a hypothesis is scored on."""

    EMPIRICAL_SUPPORT = "empirical_support"
    THEORETICAL_COHERENCE = "theoretical_coherence"
    EXPLANATORY_POWER = "explanatory_power"
    PREDICTIVE_POWER = "predictive_power"
    FALSIFIABILITY = "falsifiability"
    SIMPLICITY = "simplicity"
    NOVELTY = "novelty"
    SCOPE = "scope"


CRITERIA = tuple(c.value for c in Criterion)

DEFAULT_WEIGHTS: dict[str, float] = {
    Criterion.EMPIRICAL_SUPPORT.value: 0.20,
    Criterion.THEORETICAL_COHERENCE.value: 0.15,
    Criterion.EXPLANATORY_POWER.value: 0.20,
    Criterion.PREDICTIVE_POWER.value: 0.15,
    Criterion.FALSIFIABILITY.value: 0.10,
    Criterion.SIMPLICITY.value: 0.05,
    Criterion.NOVELTY.value: 0.10,
    Criterion.SCOPE.value: 0.05,
}


class Scope(str, Enum):
    """Reach of a hypothesis's claim."""

    LOCAL = "local"
    REGIONAL = "regional"
    GLOBAL = "global"


class PeerEvaluation(BaseModel):
    """One reviewer's score on one criterion."""

    evaluator: str
    score: float = Field(..., ge=0.0, le=1.0)
    criterion: str
    comment: str = ""
    timestamp: datetime = Field(default_factory=_now_utc)


class Hypothesis(BaseModel):
    """
    A competing explanatory claim.

    Trait ranges are checked by ``register_hypothesis`` so that every
    violation can be reported at once.
    """

    id: str
    description: str
    proposer: str = "system"
    timestamp: datetime = Field(default_factory=_now_utc)
    supporting_evidence: list[str] = Field(default_factory=list)
    contradicting_evidence: list[str] = Field(default_factory=list)
    related_nodes: list[str] = Field(default_factory=list)
    confidence: float = 0.5
    explanatory_power: float = 0.5
    falsifiability: float = 0.5
    simplicity: float = 0.5
    novelty: float = 0.5
    testability: float = 0.5
    scope: Scope = Scope.LOCAL
    domain: list[str] = Field(default_factory=list)
    peer_evaluations: list[PeerEvaluation] = Field(default_factory=list)
    version: int = 1
    improvement_actions: list[str] = Field(default_factory=list)
    paradigm: str = ""
    methodological_approach: str = ""
    theoretical_framework: str = ""

    @property
    def traits(self) -> dict[str, float]:
        return {
            "confidence": self.confidence,
            "explanatory_power": self.explanatory_power,
            "falsifiability": self.falsifiability,
            "simplicity": self.simplicity,
            "novelty": self.novelty,
            "testability": self.testability,
        }


class EvaluationCriteria(BaseModel):
    """Weighted criteria; weights need not sum to 1."""

    model_config = ConfigDict(frozen=True)

    weights: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_WEIGHTS))

    @field_validator("weights")
    @classmethod
    def _check_weights(cls, value: dict[str, float]) -> dict[str, float]:
        problems = [f"unknown criterion '{k}'" for k in value if k not in CRITERIA]
        problems += [f"weight for '{k}' is negative" for k, w in value.items() if w < 0]
        if sum(w for w in value.values() if w > 0) <= 0:
            problems.append("total weight must be positive")
        if problems:
            raise ValueError("; ".join(problems))
        return value

    @property
    def total_weight(self) -> float:
        return sum(self.weights.values())

    @classmethod
    def from_weights(cls, weights: dict[str, float]) -> EvaluationCriteria:
        """
        Build criteria from a weight map.

        Raises:
            ValidationError: If a key is not a known criterion, a weight is
                negative, or the total weight is not positive.
        """
        try:
            return cls(weights=dict(weights))
        except PydanticValidationError as e:
            raise ValidationError([str(err["msg"]) for err in e.errors()]) from e

    def with_overrides(self, overrides: dict[str, float]) -> EvaluationCriteria:
        return EvaluationCriteria.from_weights({**self.weights, **overrides})


class CompetitionResult(BaseModel):
    """Evaluation of one hypothesis under one criteria set."""

    hypothesis_id: str
    overall_score: float
    criteria_scores: dict[str, float]
    rank: int = 0
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    evidence_quality: float = 0.5
    controversy_level: float = 0.0


class CompetitionRound(BaseModel):
    """Immutable record of one arbitration."""

    model_config = ConfigDict(frozen=True)

    id: str
    hypothesis_ids: tuple[str, ...]
    criteria: EvaluationCriteria
    results: tuple[CompetitionResult, ...]
    winner: str | None
    rationale: str
    confidence: float
    timestamp: datetime = Field(default_factory=_now_utc)


class RegistrationResult(BaseModel):
    """Outcome of registering a hypothesis."""

    hypothesis_id: str
    evaluation: CompetitionResult
    competing_hypotheses: list[str] = Field(default_factory=list)


class PeerReview(BaseModel):
    """Reviewer feedback attached during evolution."""

    reviewer: str
    score: float = Field(..., ge=0.0, le=1.0)
    comments: str = ""
    suggestions: list[str] = Field(default_factory=list)


class Feedback(BaseModel):
    """Input to ``evolve_hypothesis``."""

    criteria_scores: dict[str, float] = Field(default_factory=dict)
    new_evidence: list[str] = Field(default_factory=list)
    peer_reviews: list[PeerReview] = Field(default_factory=list)


class EvolutionStep(BaseModel):
    version: int
    modifications: list[str]
    reason: str
    score_before: float
    score_after: float
    timestamp: datetime = Field(default_factory=_now_utc)


class HypothesisEvolution(BaseModel):
    """Version history and fitness trend of one hypothesis."""

    hypothesis_id: str
    steps: list[EvolutionStep] = Field(default_factory=list)
    fitness_trend: list[float] = Field(default_factory=list)


class EvolutionOutcome(BaseModel):
    hypothesis: Hypothesis
    modifications: list[str]
    score_delta: float


class ConsensusMechanismType(str, Enum):
    BAYESIAN_UPDATING = "bayesian_updating"
    DELPHI_METHOD = "delphi_method"
    PREDICTION_MARKETS = "prediction_markets"
    PEER_REVIEW = "peer_review"


class ConsensusMechanism(BaseModel):
    type: ConsensusMechanismType = ConsensusMechanismType.BAYESIAN_UPDATING
    max_iterations: int = Field(default=10, ge=1)
    convergence_threshold: float = Field(default=0.01, gt=0.0)
    parameters: dict[str, Any] = Field(default_factory=dict)


class ConsensusResult(BaseModel):
    mechanism: ConsensusMechanismType
    hypothesis_ids: list[str]
    final_scores: dict[str, float]
    iterations: int
    converged: bool
    consensus_strength: float
    leading_hypothesis: str | None


class Scenario(BaseModel):
    """A what-if overlay for ``simulate_competition``."""

    name: str
    evidence_changes: dict[str, float] = Field(
        default_factory=dict,
        description="Additive weight delta per evidence id, clamped to [0, 1]",
    )
    criteria_changes: dict[str, float] = Field(
        default_factory=dict,
        description="Criteria weight overrides",
    )


class ScenarioOutcome(BaseModel):
    scenario: str
    winner: str | None
    confidence: float
    margin: float
    robustness: float
    scores: dict[str, float] = Field(default_factory=dict)
