"""Criterion scoring for hypotheses.

Everything here is a pure function of a hypothesis, the evidence registry
and a criteria set, so repeated evaluation of unchanged inputs yields
identical results.
"""

from __future__ import annotations

import numpy as np

from thoughtgraph.competition.schemas import (
    CompetitionResult,
    Criterion,
    EvaluationCriteria,
    Hypothesis,
    Scope,
)
from thoughtgraph.graph.evidence import EvidenceRegistry

SCOPE_MULTIPLIER = {Scope.GLOBAL: 1.0, Scope.REGIONAL: 0.7, Scope.LOCAL: 0.4}

STRENGTH_THRESHOLD = 0.7
WEAKNESS_THRESHOLD = 0.3

NEUTRAL_SCORE = 0.5


def empirical_support(hypothesis: Hypothesis, evidence: EvidenceRegistry) -> float:
    """Net reliability-weighted support over total evidence weight, floored at 0."""
    supporting = [evidence.get(i) for i in hypothesis.supporting_evidence]
    contradicting = [evidence.get(i) for i in hypothesis.contradicting_evidence]
    supporting = [w for w in supporting if w is not None]
    contradicting = [w for w in contradicting if w is not None]

    total_weight = sum(w.weight for w in supporting) + sum(w.weight for w in contradicting)
    if total_weight <= 0:
        return NEUTRAL_SCORE

    net = sum(w.weight * w.reliability for w in supporting) - sum(
        w.weight * w.reliability for w in contradicting
    )
    return min(1.0, max(0.0, net / total_weight))


def theoretical_coherence(hypothesis: Hypothesis) -> float:
    scores = [
        e.score
        for e in hypothesis.peer_evaluations
        if e.criterion == Criterion.THEORETICAL_COHERENCE.value
    ]
    return float(np.mean(scores)) if scores else NEUTRAL_SCORE


def scope_score(hypothesis: Hypothesis) -> float:
    return SCOPE_MULTIPLIER[hypothesis.scope] * min(1.0, len(hypothesis.domain) / 5)


def predictive_power(hypothesis: Hypothesis) -> float:
    return (hypothesis.testability + scope_score(hypothesis)) / 2


def criterion_scores(hypothesis: Hypothesis, evidence: EvidenceRegistry) -> dict[str, float]:
    """All eight criterion scores, in canonical order."""
    return {
        Criterion.EMPIRICAL_SUPPORT.value: empirical_support(hypothesis, evidence),
        Criterion.THEORETICAL_COHERENCE.value: theoretical_coherence(hypothesis),
        Criterion.EXPLANATORY_POWER.value: hypothesis.explanatory_power,
        Criterion.PREDICTIVE_POWER.value: predictive_power(hypothesis),
        Criterion.FALSIFIABILITY.value: hypothesis.falsifiability,
        Criterion.SIMPLICITY.value: hypothesis.simplicity,
        Criterion.NOVELTY.value: hypothesis.novelty,
        Criterion.SCOPE.value: scope_score(hypothesis),
    }


def overall_score(scores: dict[str, float], criteria: EvaluationCriteria) -> float:
    """Weighted mean of criterion scores, normalized by total weight."""
    total = criteria.total_weight
    if total <= 0:
        return 0.0
    return sum(scores.get(name, 0.0) * weight for name, weight in criteria.weights.items()) / total


def evidence_quality(hypothesis: Hypothesis, evidence: EvidenceRegistry) -> float:
    ids = hypothesis.supporting_evidence + hypothesis.contradicting_evidence
    known = [evidence.get(i) for i in ids]
    qualities = [w.quality for w in known if w is not None]
    return float(np.mean(qualities)) if qualities else NEUTRAL_SCORE


def controversy_level(hypothesis: Hypothesis) -> float:
    """How much peer reviewers disagree, in [0, 1]."""
    scores = [e.score for e in hypothesis.peer_evaluations]
    if len(scores) < 2:
        return 0.0
    return min(1.0, float(np.var(scores)) * 4)


def _label(criterion: str) -> str:
    return criterion.replace("_", " ")


def evaluate(
    hypothesis: Hypothesis,
    criteria: EvaluationCriteria,
    evidence: EvidenceRegistry,
) -> CompetitionResult:
    """Score a hypothesis under ``criteria``. Rank is left at 0."""
    scores = criterion_scores(hypothesis, evidence)
    strengths: list[str] = []
    weaknesses: list[str] = []
    recommendations: list[str] = []

    for name, score in scores.items():
        if score >= STRENGTH_THRESHOLD:
            strengths.append(f"Strong {_label(name)} ({score * 100:.1f}%)")
        elif score <= WEAKNESS_THRESHOLD:
            weaknesses.append(f"Weak {_label(name)} ({score * 100:.1f}%)")
            recommendations.append(f"Improve {_label(name)} through targeted research")

    return CompetitionResult(
        hypothesis_id=hypothesis.id,
        overall_score=overall_score(scores, criteria),
        criteria_scores=scores,
        strengths=strengths,
        weaknesses=weaknesses,
        recommendations=recommendations,
        evidence_quality=evidence_quality(hypothesis, evidence),
        controversy_level=controversy_level(hypothesis),
    )


def rank_results(results: list[CompetitionResult]) -> list[CompetitionResult]:
    """
    Sort by descending overall score and assign dense ranks.

    The sort is stable, so equal scores keep their input order and share
    a rank.
    """
    ordered = sorted(results, key=lambda r: r.overall_score, reverse=True)
    ranked: list[CompetitionResult] = []
    rank = 0
    previous: float | None = None
    for result in ordered:
        if previous is None or result.overall_score != previous:
            rank += 1
            previous = result.overall_score
        ranked.append(result.model_copy(update={"rank": rank}))
    return ranked


def winning_margin(ranked: list[CompetitionResult]) -> float:
    """Score gap between first and second place; 0 with fewer than two entries."""
    if len(ranked) < 2:
        return 0.0
    return ranked[0].overall_score - ranked[1].overall_score


def robustness(ranked: list[CompetitionResult]) -> float:
    """1 minus normalized variance of participant scores."""
    if len(ranked) < 2:
        return 1.0
    variance = float(np.var([r.overall_score for r in ranked]))
    return 1.0 - min(1.0, variance * 4)
