"""
Research orchestrator.

Drives a run through the nine stages and hands hypotheses and evidence
to the competition engine between stages: registration and a first
round after hypothesis generation, evidence weights after integration,
a second round after pruning, and evolution plus a final round and
consensus after reflection.
"""

from __future__ import annotations

import logging

from thoughtgraph.competition import (
    ConsensusMechanism,
    Feedback,
    Hypothesis,
    HypothesisCompetitionEngine,
    Scope,
)
from thoughtgraph.config import Settings, get_settings
from thoughtgraph.errors import ValidationError
from thoughtgraph.graph.schemas import GraphNode, NodeType, mean_confidence
from thoughtgraph.graph.store import MergeSpec
from thoughtgraph.pipeline.schemas import EvidenceLink, QualityAudit, Stage, StageResult
from thoughtgraph.pipeline.stage_engine import StageEngine
from thoughtgraph.pipeline.state import PipelineState
from thoughtgraph.reasoner.base import Reasoner

# Reflection aspects that speak to a competition criterion.
_ASPECT_CRITERIA = {
    "evidence quality": "empirical_support",
    "logical consistency": "theoretical_coherence",
    "coherence": "explanatory_power",
    "methodological rigor": "falsifiability",
    "scope": "scope",
}


class ResearchOrchestrator:
    """
    Orchestrates a research run.

    Owns the stage engine, the competition engine and the state of the
    current run.
    """

    def __init__(
        self,
        reasoner: Reasoner,
        competition: HypothesisCompetitionEngine | None = None,
        settings: Settings | None = None,
    ) -> None:
        """
        Initialize the research orchestrator.

        Args:
            reasoner: Reasoner shared by every stage.
            competition: Competition engine (a fresh one if None), reset at the
                start of every run.
            settings: Pipeline settings (cached settings if None).
        """
        self._logger = logging.getLogger(__name__)
        self._settings = settings or get_settings()
        self._reasoner = reasoner
        self._stages = StageEngine(reasoner, self._settings)
        self._competition = competition or HypothesisCompetitionEngine()
        self._state: PipelineState | None = None

    @property
    def state(self) -> PipelineState | None:
        """Get the current run state, if any."""
        return self._state

    @property
    def competition(self) -> HypothesisCompetitionEngine:
        return self._competition

    async def start(self, question: str) -> StageResult:
        """Begin a new run and execute the initialization stage."""
        self._logger.info(f"Starting research run: {question}")
        self._competition.reset()
        self._state = PipelineState(question)
        return await self.advance(question)

    async def advance(self, user_input: object = None) -> StageResult:
        """
        Run the next stage and its competition hand-off.

        Raises:
            RuntimeError: If no run has been started or the run is complete.
        """
        state = self._require_state()
        stage = state.next_stage
        if stage is None:
            raise RuntimeError("Research run is already complete")

        result = await self._stages.run_stage(stage.value, state.graph, state.context, user_input)
        state.record(result)

        if stage == Stage.HYPOTHESIS_GENERATION:
            self._register_hypotheses(state, result)
            self._compete(state, result)
        elif stage == Stage.EVIDENCE_INTEGRATION:
            self._attach_evidence(result.artifacts.get("evidence", []))
        elif stage == Stage.PRUNING_MERGING:
            self._sync_with_graph(result)
            self._compete(state, result)
        elif stage == Stage.SUBGRAPH_EXTRACTION:
            self._describe_landscape(state, result)
        elif stage == Stage.REFLECTION:
            self._evolve_from_reflection(state, result)
            self._compete(state, result)
            self._seek_consensus(state, result)
            self._describe_landscape(state, result)

        return result

    async def run(self, question: str, through_stage: int = Stage.FINAL_ANALYSIS.value) -> PipelineState:
        """Run stages 1 to ``through_stage`` and return the run state."""
        await self.start(question)
        state = self._require_state()
        while state.next_stage is not None and state.next_stage.value <= through_stage:
            await self.advance()
        return state

    def _require_state(self) -> PipelineState:
        if self._state is None:
            raise RuntimeError("No research run in progress")
        return self._state

    async def close(self) -> None:
        await self._reasoner.close()

    # ------------------------------------------------------------------
    # Competition hand-offs
    # ------------------------------------------------------------------

    def _hypothesis_from_node(self, node: GraphNode, field: str) -> Hypothesis:
        traits = node.metadata.extra.get("traits", {})
        scope = node.metadata.extra.get("scope", Scope.LOCAL.value)
        domain = list(dict.fromkeys(node.metadata.disciplinary_tags + ([field] if field else [])))
        return Hypothesis(
            id=node.id,
            description=node.metadata.value or node.label,
            proposer="hypothesis_generation",
            related_nodes=[node.metadata.parent_dimension] if node.metadata.parent_dimension else [],
            confidence=mean_confidence(node),
            scope=scope if scope in {s.value for s in Scope} else Scope.LOCAL,
            domain=domain,
            **{k: float(v) for k, v in traits.items()},
        )

    def _register_hypotheses(self, state: PipelineState, result: StageResult) -> None:
        field = result.context.field
        for node in state.graph.nodes(NodeType.HYPOTHESIS):
            if node.id in self._competition.hypotheses:
                continue
            try:
                self._competition.register_hypothesis(self._hypothesis_from_node(node, field))
            except ValidationError as e:
                self._logger.warning(f"Skipping hypothesis {node.id}: {e}")
                result.artifacts.setdefault("rejected_hypotheses", []).append(
                    {"hypothesis_id": node.id, "violations": e.violations}
                )

    def _attach_evidence(self, links: list[EvidenceLink]) -> None:
        for link in links:
            if link.hypothesis_id in self._competition.hypotheses:
                self._competition.attach_evidence(link.hypothesis_id, link.weight, supporting=link.supporting)

    def _sync_with_graph(self, result: StageResult) -> None:
        self._competition.detach_evidence(result.artifacts.get("pruned", []))
        registered = self._competition.hypotheses
        merges: list[MergeSpec] = result.artifacts.get("merges", [])
        for merge in merges:
            if merge.target_id not in registered:
                continue
            for source_id in merge.source_ids:
                if source_id in registered:
                    self._competition.absorb_hypothesis(source_id, merge.target_id)

    def _live_hypothesis_ids(self, state: PipelineState) -> list[str]:
        registered = self._competition.hypotheses
        return [n.id for n in state.graph.nodes(NodeType.HYPOTHESIS) if n.id in registered]

    def _compete(self, state: PipelineState, result: StageResult) -> None:
        competition_round = self._competition.conduct_competition(self._live_hypothesis_ids(state))
        result.artifacts["competition"] = competition_round
        result.narrative += f" Competition {competition_round.id}: {competition_round.rationale}"

    def _evolve_from_reflection(self, state: PipelineState, result: StageResult) -> None:
        audits: list[QualityAudit] = result.artifacts.get("audits", [])
        scores = {
            _ASPECT_CRITERIA[a.aspect]: a.score
            for a in audits
            if a.aspect in _ASPECT_CRITERIA and not a.failed
        }
        feedback = Feedback(criteria_scores=scores)
        outcomes = []
        for hypothesis_id in self._live_hypothesis_ids(state):
            outcome = self._competition.evolve_hypothesis(hypothesis_id, feedback)
            outcomes.append(outcome)
            node = state.graph.get_node(hypothesis_id)
            if node is not None:
                extra = {
                    **node.metadata.extra,
                    "version": outcome.hypothesis.version,
                    "confidence": outcome.hypothesis.confidence,
                    "improvement_actions": outcome.hypothesis.improvement_actions,
                }
                state.graph.update_node(hypothesis_id, metadata=node.metadata.model_copy(update={"extra": extra}))
        result.artifacts["evolution"] = outcomes
        if outcomes:
            result.narrative += f" Evolved {len(outcomes)} hypothesis(es) from reflection feedback."

    def _seek_consensus(self, state: PipelineState, result: StageResult) -> None:
        consensus = self._competition.build_consensus(self._live_hypothesis_ids(state), ConsensusMechanism())
        result.artifacts["consensus"] = consensus
        if consensus.leading_hypothesis:
            result.narrative += (
                f" Bayesian consensus favours {consensus.leading_hypothesis} "
                f"after {consensus.iterations} iteration(s)."
            )

    def _describe_landscape(self, state: PipelineState, result: StageResult) -> None:
        expected = [n.label for n in state.graph.nodes(NodeType.DIMENSION)]
        landscape = self._competition.analyze_hypothesis_landscape(expected)
        result.artifacts["landscape"] = landscape
        result.narrative += f" Hypothesis landscape: {landscape.summary()}"
