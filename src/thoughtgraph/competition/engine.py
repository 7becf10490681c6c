"""
Hypothesis competition engine.

Registers hypotheses, scores them against weighted criteria, runs
competition rounds, evolves hypotheses under feedback, builds consensus
and simulates what-if scenarios. All inputs are validated before any
state changes.
"""

from __future__ import annotations

import logging
from typing import Any

from thoughtgraph.competition import scoring
from thoughtgraph.competition.consensus import build_consensus
from thoughtgraph.competition.landscape import LandscapeAnalysis, LandscapeAnalyzer
from thoughtgraph.competition.schemas import (
    CRITERIA,
    CompetitionResult,
    CompetitionRound,
    ConsensusMechanism,
    ConsensusResult,
    Criterion,
    EvaluationCriteria,
    EvolutionOutcome,
    EvolutionStep,
    Feedback,
    Hypothesis,
    HypothesisEvolution,
    PeerEvaluation,
    RegistrationResult,
    Scenario,
    ScenarioOutcome,
)
from thoughtgraph.errors import UnknownHypothesisError, ValidationError
from thoughtgraph.graph.evidence import EvidenceRegistry, EvidenceWeight

logger = logging.getLogger(__name__)

MIN_DESCRIPTION_LENGTH = 10

# Criteria scored below this in feedback trigger an improvement action.
IMPROVEMENT_THRESHOLD = 0.5
# Reviewer score at which suggestions are adopted.
ADOPTION_THRESHOLD = 0.7
# Placeholder evolution policy: a bounded, evidence-independent nudge.
CONFIDENCE_STEP = 0.1

PEER_REVIEW_CRITERION = "peer_review"

_IMPROVEMENT_TEMPLATES = {
    Criterion.EMPIRICAL_SUPPORT.value: "Seek additional empirical evidence",
    Criterion.FALSIFIABILITY.value: "Develop testable predictions",
    Criterion.SIMPLICITY.value: "Reduce unnecessary complexity",
}


def _improvement_action(criterion: str) -> str:
    return _IMPROVEMENT_TEMPLATES.get(criterion, f"Improve {criterion.replace('_', ' ')}")


def _all_evidence(h: Hypothesis) -> set[str]:
    return set(h.supporting_evidence) | set(h.contradicting_evidence)


class HypothesisCompetitionEngine:
    """
    Arbitrates between competing hypotheses.

    Holds the registered hypotheses, the evidence-weight registry, the
    append-only competition history and per-hypothesis evolution records.
    """

    def __init__(
        self,
        evidence: EvidenceRegistry | None = None,
        default_criteria: EvaluationCriteria | None = None,
        analyzer: LandscapeAnalyzer | None = None,
    ) -> None:
        self._evidence = evidence or EvidenceRegistry()
        self._default_criteria = default_criteria or EvaluationCriteria()
        self._analyzer = analyzer or LandscapeAnalyzer()
        self._hypotheses: dict[str, Hypothesis] = {}
        self._history: list[CompetitionRound] = []
        self._evolution: dict[str, HypothesisEvolution] = {}

    @property
    def evidence(self) -> EvidenceRegistry:
        return self._evidence

    @property
    def default_criteria(self) -> EvaluationCriteria:
        return self._default_criteria

    @property
    def hypotheses(self) -> dict[str, Hypothesis]:
        """Registered hypotheses (latest versions) by id."""
        return dict(self._hypotheses)

    @property
    def competition_history(self) -> list[CompetitionRound]:
        return list(self._history)

    def get_hypothesis(self, hypothesis_id: str) -> Hypothesis:
        try:
            return self._hypotheses[hypothesis_id]
        except KeyError:
            raise UnknownHypothesisError(hypothesis_id) from None

    def evolution_history(self, hypothesis_id: str) -> HypothesisEvolution:
        self.get_hypothesis(hypothesis_id)
        return self._evolution[hypothesis_id].model_copy(deep=True)

    # ------------------------------------------------------------------
    # Registration and evidence bookkeeping
    # ------------------------------------------------------------------

    def validate_hypothesis(self, hypothesis: Hypothesis) -> list[str]:
        """Every reason ``hypothesis`` cannot be registered."""
        violations: list[str] = []
        if not hypothesis.id.strip():
            violations.append("id must not be empty")
        elif hypothesis.id in self._hypotheses:
            violations.append(f"hypothesis {hypothesis.id} is already registered")
        if len(hypothesis.description.strip()) < MIN_DESCRIPTION_LENGTH:
            violations.append(f"description must be at least {MIN_DESCRIPTION_LENGTH} characters")
        for name, value in hypothesis.traits.items():
            if not 0.0 <= value <= 1.0:
                violations.append(f"{name}={value} outside [0, 1]")
        if not [d for d in hypothesis.domain if d.strip()]:
            violations.append("domain must contain at least one tag")
        return violations

    def register_hypothesis(self, hypothesis: Hypothesis) -> RegistrationResult:
        """
        Validate and store a hypothesis, then evaluate it with the default criteria.

        Raises:
            ValidationError: Listing every violation; nothing is stored.
        """
        violations = self.validate_hypothesis(hypothesis)
        if violations:
            raise ValidationError(violations, hypothesis_id=hypothesis.id or None)

        competing = self.competing_hypotheses(hypothesis)
        self._hypotheses[hypothesis.id] = hypothesis
        evaluation = self.evaluate_hypothesis(hypothesis)
        self._evolution[hypothesis.id] = HypothesisEvolution(
            hypothesis_id=hypothesis.id,
            fitness_trend=[evaluation.overall_score],
        )

        logger.info(
            f"Registered hypothesis {hypothesis.id} (score {evaluation.overall_score:.3f}, "
            f"{len(competing)} competitor(s))"
        )
        return RegistrationResult(
            hypothesis_id=hypothesis.id,
            evaluation=evaluation,
            competing_hypotheses=competing,
        )

    def competing_hypotheses(self, hypothesis: Hypothesis) -> list[str]:
        """Registered hypotheses sharing a domain and either evidence or a related node."""
        competing: list[str] = []
        for other in self._hypotheses.values():
            if other.id == hypothesis.id:
                continue
            if not set(other.domain) & set(hypothesis.domain):
                continue
            shared_evidence = _all_evidence(other) & _all_evidence(hypothesis)
            shared_nodes = set(other.related_nodes) & set(hypothesis.related_nodes)
            if shared_evidence or shared_nodes:
                competing.append(other.id)
        return competing

    def record_evidence(self, weight: EvidenceWeight) -> None:
        self._evidence.upsert(weight)

    def attach_evidence(
        self,
        hypothesis_id: str,
        weight: EvidenceWeight,
        supporting: bool = True,
    ) -> Hypothesis:
        """
        Record an evidence weight and link it to a hypothesis.

        Linking evidence is bookkeeping and does not create a new version.
        """
        hypothesis = self.get_hypothesis(hypothesis_id)
        self._evidence.upsert(weight)
        field = "supporting_evidence" if supporting else "contradicting_evidence"
        current = getattr(hypothesis, field)
        if weight.evidence_id not in current:
            hypothesis = hypothesis.model_copy(update={field: current + [weight.evidence_id]})
            self._hypotheses[hypothesis_id] = hypothesis
        return hypothesis

    def detach_evidence(self, evidence_ids: list[str]) -> list[str]:
        """
        Unlink evidence from every hypothesis and drop its weights.

        Returns:
            Ids of the hypotheses that referenced any of the evidence.
        """
        dropped = set(evidence_ids)
        affected: list[str] = []
        for hypothesis_id, hypothesis in self._hypotheses.items():
            if not _all_evidence(hypothesis) & dropped:
                continue
            self._hypotheses[hypothesis_id] = hypothesis.model_copy(
                update={
                    "supporting_evidence": [e for e in hypothesis.supporting_evidence if e not in dropped],
                    "contradicting_evidence": [e for e in hypothesis.contradicting_evidence if e not in dropped],
                }
            )
            affected.append(hypothesis_id)
        self._evidence.discard(dropped)
        if affected:
            logger.info(f"Detached {len(dropped)} evidence item(s) from {len(affected)} hypothesis(es)")
        return affected

    def absorb_hypothesis(self, source_id: str, target_id: str) -> Hypothesis:
        """
        Fold ``source_id`` into ``target_id`` and retire the source.

        The target gains the source's evidence and related nodes without a
        new version. Recorded rounds keep the source id.

        Raises:
            UnknownHypothesisError: If either id is not registered.
        """
        source = self.get_hypothesis(source_id)
        target = self.get_hypothesis(target_id)

        def union(mine: list[str], theirs: list[str]) -> list[str]:
            return list(dict.fromkeys(mine + theirs))

        merged = target.model_copy(
            update={
                "supporting_evidence": union(target.supporting_evidence, source.supporting_evidence),
                "contradicting_evidence": union(target.contradicting_evidence, source.contradicting_evidence),
                "related_nodes": union(target.related_nodes, source.related_nodes),
            }
        )
        self._hypotheses[target_id] = merged
        del self._hypotheses[source_id]
        del self._evolution[source_id]
        logger.info(f"Absorbed hypothesis {source_id} into {target_id}")
        return merged

    def reset(self) -> None:
        """Forget every hypothesis, round, evolution record and evidence weight."""
        self._hypotheses.clear()
        self._history.clear()
        self._evolution.clear()
        self._evidence.restore({})

    # ------------------------------------------------------------------
    # Evaluation and competition
    # ------------------------------------------------------------------

    def evaluate_hypothesis(
        self,
        hypothesis: Hypothesis,
        criteria: EvaluationCriteria | None = None,
    ) -> CompetitionResult:
        """Score ``hypothesis``; a pure function of it, the criteria and the evidence registry."""
        return scoring.evaluate(hypothesis, criteria or self._default_criteria, self._evidence)

    def _resolve(self, hypothesis_ids: list[str]) -> list[Hypothesis]:
        ids = list(dict.fromkeys(hypothesis_ids))
        for hypothesis_id in ids:
            if hypothesis_id not in self._hypotheses:
                raise UnknownHypothesisError(hypothesis_id)
        return [self._hypotheses[i] for i in ids]

    def conduct_competition(
        self,
        hypothesis_ids: list[str],
        criteria: EvaluationCriteria | None = None,
        evidence_update: dict[str, dict[str, Any]] | None = None,
    ) -> CompetitionRound:
        """
        Rank hypotheses and record the round.

        Args:
            hypothesis_ids: Participants; duplicates are ignored.
            criteria: Weighted criteria (engine default if omitted).
            evidence_update: Field assignments per evidence id applied
                before scoring, e.g. ``{"e1": {"reliability": 0.9}}``.

        Returns:
            The recorded round. Confidence is the score margin between
            first and second place, 0 with fewer than two participants.

        Raises:
            UnknownHypothesisError: If an id is not registered.
            ValidationError: If the evidence update is invalid.
        """
        criteria = criteria or self._default_criteria
        participants = self._resolve(hypothesis_ids)
        if evidence_update:
            self._evidence.apply_update(evidence_update)

        ranked = scoring.rank_results([self.evaluate_hypothesis(h, criteria) for h in participants])
        winner = ranked[0].hypothesis_id if ranked else None
        confidence = scoring.winning_margin(ranked)

        competition_round = CompetitionRound(
            id=f"round-{len(self._history) + 1}",
            hypothesis_ids=tuple(h.id for h in participants),
            criteria=criteria,
            results=tuple(ranked),
            winner=winner,
            rationale=self._rationale(ranked),
            confidence=confidence,
        )
        self._history.append(competition_round)
        for result in ranked:
            self._evolution[result.hypothesis_id].fitness_trend.append(result.overall_score)

        logger.info(
            f"Competition {competition_round.id}: {len(ranked)} participant(s), "
            f"winner={winner}, confidence={confidence:.3f}"
        )
        return competition_round

    @staticmethod
    def _rationale(ranked: list[CompetitionResult]) -> str:
        if not ranked:
            return "No hypotheses competed."
        top = ranked[0]
        best = sorted(top.criteria_scores.items(), key=lambda kv: kv[1], reverse=True)[:3]
        excelling = ", ".join(name.replace("_", " ") for name, _ in best)
        return f"Hypothesis {top.hypothesis_id} won with score {top.overall_score:.3f}, excelling in: {excelling}"

    # ------------------------------------------------------------------
    # Evolution
    # ------------------------------------------------------------------

    def evolve_hypothesis(self, hypothesis_id: str, feedback: Feedback) -> EvolutionOutcome:
        """
        Produce a new version of a hypothesis from feedback.

        Confidence moves by a fixed +0.1 capped at 1.0. This is a
        placeholder policy and does not look at the evidence.

        Raises:
            UnknownHypothesisError: If the id is not registered.
            ValidationError: If feedback names an unknown criterion or a score outside [0, 1].
        """
        hypothesis = self.get_hypothesis(hypothesis_id)
        violations = [f"unknown criterion '{c}'" for c in feedback.criteria_scores if c not in CRITERIA]
        violations += [
            f"{c}={s} outside [0, 1]" for c, s in feedback.criteria_scores.items() if not 0.0 <= s <= 1.0
        ]
        if violations:
            raise ValidationError(violations, hypothesis_id=hypothesis_id)

        score_before = self.evaluate_hypothesis(hypothesis).overall_score
        modifications: list[str] = []
        actions: list[str] = []

        for criterion, score in feedback.criteria_scores.items():
            if score < IMPROVEMENT_THRESHOLD:
                action = _improvement_action(criterion)
                actions.append(action)
                modifications.append(action)

        supporting = list(hypothesis.supporting_evidence)
        for evidence_id in feedback.new_evidence:
            if evidence_id not in supporting:
                supporting.append(evidence_id)
                modifications.append(f"Added supporting evidence: {evidence_id}")

        evaluations = list(hypothesis.peer_evaluations)
        for review in feedback.peer_reviews:
            evaluations.append(
                PeerEvaluation(
                    evaluator=review.reviewer,
                    score=review.score,
                    criterion=PEER_REVIEW_CRITERION,
                    comment=review.comments,
                )
            )
            modifications.append(f"Peer review from {review.reviewer} ({review.score:.2f})")
            if review.score >= ADOPTION_THRESHOLD:
                for suggestion in review.suggestions:
                    actions.append(suggestion)
                    modifications.append(f"Adopted suggestion: {suggestion}")

        evolved = hypothesis.model_copy(
            update={
                "supporting_evidence": supporting,
                "peer_evaluations": evaluations,
                "improvement_actions": hypothesis.improvement_actions + actions,
                "confidence": min(1.0, hypothesis.confidence + CONFIDENCE_STEP),
                "version": hypothesis.version + 1,
            }
        )
        score_after = self.evaluate_hypothesis(evolved).overall_score

        self._hypotheses[hypothesis_id] = evolved
        record = self._evolution[hypothesis_id]
        record.steps.append(
            EvolutionStep(
                version=evolved.version,
                modifications=modifications,
                reason="Feedback-based improvement",
                score_before=score_before,
                score_after=score_after,
            )
        )
        record.fitness_trend.append(score_after)

        logger.info(f"Evolved hypothesis {hypothesis_id} to v{evolved.version} ({len(modifications)} change(s))")
        return EvolutionOutcome(
            hypothesis=evolved,
            modifications=modifications,
            score_delta=score_after - score_before,
        )

    # ------------------------------------------------------------------
    # Consensus, landscape, simulation
    # ------------------------------------------------------------------

    def build_consensus(
        self,
        hypothesis_ids: list[str],
        mechanism: ConsensusMechanism | None = None,
    ) -> ConsensusResult:
        """
        Seek consensus among hypotheses.

        Raises:
            UnknownHypothesisError: If an id is not registered.
            ConsensusNotSupportedError: For mechanisms without an algorithm.
        """
        mechanism = mechanism or ConsensusMechanism()
        participants = self._resolve(hypothesis_ids)
        likelihoods = {h.id: self.evaluate_hypothesis(h).overall_score for h in participants}
        return build_consensus(participants, likelihoods, mechanism)

    def analyze_hypothesis_landscape(self, expected_domains: list[str] | None = None) -> LandscapeAnalysis:
        return self._analyzer.analyze(list(self._hypotheses.values()), expected_domains)

    def simulate_competition(
        self,
        hypothesis_ids: list[str],
        scenarios: list[Scenario],
        criteria: EvaluationCriteria | None = None,
    ) -> list[ScenarioOutcome]:
        """
        Re-run a competition under each scenario without touching persistent state.

        Each scenario starts from the live evidence registry. Rounds are
        not recorded and the registry is restored afterwards.

        Raises:
            UnknownHypothesisError: If an id is not registered.
            ValidationError: If a scenario's criteria overrides are invalid.
        """
        base = criteria or self._default_criteria
        participants = self._resolve(hypothesis_ids)
        scenario_criteria = [base.with_overrides(s.criteria_changes) for s in scenarios]

        snapshot = self._evidence.snapshot()
        outcomes: list[ScenarioOutcome] = []
        try:
            for scenario, scenario_weights in zip(scenarios, scenario_criteria):
                self._evidence.restore(snapshot)
                self._evidence.apply_deltas(scenario.evidence_changes)
                ranked = scoring.rank_results([self.evaluate_hypothesis(h, scenario_weights) for h in participants])
                outcomes.append(
                    ScenarioOutcome(
                        scenario=scenario.name,
                        winner=ranked[0].hypothesis_id if ranked else None,
                        confidence=scoring.winning_margin(ranked),
                        margin=self._scenario_margin(ranked),
                        robustness=scoring.robustness(ranked),
                        scores={r.hypothesis_id: r.overall_score for r in ranked},
                    )
                )
        finally:
            self._evidence.restore(snapshot)
        return outcomes

    @staticmethod
    def _scenario_margin(ranked: list[CompetitionResult]) -> float:
        if not ranked:
            return 0.0
        if len(ranked) == 1:
            return 1.0
        return scoring.winning_margin(ranked)
