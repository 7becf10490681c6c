"""
Smoke tests for the research orchestrator.

Runs the full pipeline against a scripted reasoner and checks the
competition hand-offs between stages.
"""

import pytest

from conftest import QUESTION, DuplicatingReasoner, ScriptedReasoner
from thoughtgraph.config import Settings
from thoughtgraph.errors import UnknownHypothesisError
from thoughtgraph.graph import NodeType
from thoughtgraph.pipeline import PipelineState, ResearchOrchestrator, Stage


class TaggingReasoner(ScriptedReasoner):
    """Appends a run tag to every proposed hypothesis."""

    def __init__(self, tag: str) -> None:
        super().__init__()
        self.tag = tag

    def _structured(self, prompt: str) -> dict:
        data = super()._structured(prompt)
        for hypothesis in data.get("hypotheses", []):
            hypothesis["statement"] += f" ({self.tag})"
        return data


class ShortStatementReasoner(ScriptedReasoner):
    """Proposes hypotheses too short to register."""

    def _structured(self, prompt: str) -> dict:
        if "Propose 2 to 3 testable hypotheses" in prompt:
            return {"hypotheses": [{"statement": "Too short"}]}
        return super()._structured(prompt)


class TestPipelineState:
    """Tests for PipelineState."""

    def test_state_initialization(self) -> None:
        state = PipelineState(QUESTION)

        assert state.question == QUESTION
        assert state.context.topic == QUESTION
        assert state.current_stage == 0
        assert state.next_stage == Stage.INITIALIZATION
        assert not state.is_complete
        assert state.results == []
        assert state.completed_at is None


class TestResearchOrchestrator:
    """Tests for ResearchOrchestrator."""

    @pytest.fixture
    def orchestrator(self, reasoner: ScriptedReasoner, settings: Settings) -> ResearchOrchestrator:
        return ResearchOrchestrator(reasoner=reasoner, settings=settings)

    @pytest.mark.asyncio
    async def test_full_run(self, orchestrator: ResearchOrchestrator, reasoner: ScriptedReasoner) -> None:
        state = await orchestrator.run(QUESTION)

        assert state.is_complete
        assert state.completed_at is not None
        assert [r.stage for r in state.results] == list(Stage)
        assert len(state.narratives) == 9
        assert state.failures == []
        assert state.graph.get_node("9.0") is not None

        competition = orchestrator.competition
        history = competition.competition_history
        assert [r.id for r in history] == ["round-1", "round-2", "round-3"]
        assert history[0].winner == "3.1.1"
        assert len(competition.hypotheses) == 6

        for hypothesis in competition.hypotheses.values():
            assert hypothesis.version == 2
            assert len(hypothesis.supporting_evidence) == 1
        extra = state.graph.get_node("3.1.1").metadata.extra
        assert extra["version"] == 2
        assert extra["confidence"] == pytest.approx(competition.get_hypothesis("3.1.1").confidence)

        reflection = state.results[Stage.REFLECTION.value - 1]
        consensus = reflection.artifacts["consensus"]
        assert consensus.leading_hypothesis in competition.hypotheses
        assert "Bayesian consensus favours" in reflection.narrative
        assert "landscape" in state.results[Stage.SUBGRAPH_EXTRACTION.value - 1].artifacts

        await orchestrator.close()
        assert reasoner.closed

    @pytest.mark.asyncio
    async def test_run_can_stop_early_and_resume(self, orchestrator: ResearchOrchestrator) -> None:
        state = await orchestrator.run(QUESTION, through_stage=3)

        assert state.current_stage == 3
        assert state.next_stage == Stage.EVIDENCE_INTEGRATION
        assert len(orchestrator.competition.competition_history) == 1

        result = await orchestrator.advance()

        assert result.stage == Stage.EVIDENCE_INTEGRATION
        assert len(state.graph.nodes(NodeType.EVIDENCE)) == 6

    @pytest.mark.asyncio
    async def test_advance_without_run(self, orchestrator: ResearchOrchestrator) -> None:
        with pytest.raises(RuntimeError):
            await orchestrator.advance()

    @pytest.mark.asyncio
    async def test_advance_after_completion(self, orchestrator: ResearchOrchestrator) -> None:
        await orchestrator.run(QUESTION)
        with pytest.raises(RuntimeError):
            await orchestrator.advance()

    @pytest.mark.asyncio
    async def test_reflection_bumps_version_and_confidence_on_graph(
        self, orchestrator: ResearchOrchestrator
    ) -> None:
        state = await orchestrator.run(QUESTION, through_stage=3)
        registered = orchestrator.competition.get_hypothesis("3.1.1").confidence
        assert "version" not in state.graph.get_node("3.1.1").metadata.extra

        while state.next_stage is not None:
            await orchestrator.advance()

        extra = state.graph.get_node("3.1.1").metadata.extra
        assert extra["version"] == 2
        assert extra["confidence"] == pytest.approx(min(1.0, registered + 0.1))

    @pytest.mark.asyncio
    async def test_result_is_recorded_when_a_hand_off_fails(self, orchestrator: ResearchOrchestrator) -> None:
        state = await orchestrator.run(QUESTION, through_stage=2)

        def fail(*args, **kwargs):
            raise UnknownHypothesisError("3.9.9")

        # Monkeypatch instance method
        orchestrator.competition.conduct_competition = fail  # type: ignore[method-assign]

        with pytest.raises(UnknownHypothesisError):
            await orchestrator.advance()

        assert state.current_stage == 3
        assert state.results[-1].stage == Stage.HYPOTHESIS_GENERATION
        assert len(state.context.hypotheses) == 6
        assert state.next_stage == Stage.EVIDENCE_INTEGRATION


@pytest.mark.asyncio
async def test_invalid_hypotheses_are_reported_not_registered(settings: Settings) -> None:
    orchestrator = ResearchOrchestrator(reasoner=ShortStatementReasoner(), settings=settings)

    state = await orchestrator.run(QUESTION, through_stage=3)

    rejected = state.results[-1].artifacts["rejected_hypotheses"]
    assert [r["hypothesis_id"] for r in rejected] == ["3.1.1", "3.2.1", "3.3.1"]
    assert orchestrator.competition.hypotheses == {}
    assert orchestrator.competition.competition_history[0].winner is None


@pytest.mark.asyncio
async def test_pruned_evidence_stops_counting(settings: Settings) -> None:
    reasoner = ScriptedReasoner(weak_evidence=("Interventions aimed at",))
    orchestrator = ResearchOrchestrator(reasoner=reasoner, settings=settings)

    state = await orchestrator.run(QUESTION, through_stage=5)

    competition = orchestrator.competition
    live = {n.id for n in state.graph.nodes(NodeType.EVIDENCE)}
    assert live == {"4.1", "4.3", "4.5"}
    stale = {
        h.id: h.supporting_evidence + h.contradicting_evidence
        for h in competition.hypotheses.values()
        if set(h.supporting_evidence + h.contradicting_evidence) - live
    }
    assert stale == {}
    assert "4.2" not in competition.evidence

    first, second = competition.competition_history
    before = {r.hypothesis_id: r.overall_score for r in first.results}
    after = {r.hypothesis_id: r.overall_score for r in second.results}
    assert after != before
    assert after["3.1.1"] != pytest.approx(before["3.1.1"])
    assert after["3.1.2"] == pytest.approx(before["3.1.2"])


@pytest.mark.asyncio
async def test_merged_hypotheses_leave_the_competition(settings: Settings) -> None:
    orchestrator = ResearchOrchestrator(reasoner=DuplicatingReasoner(), settings=settings)

    await orchestrator.run(QUESTION, through_stage=5)

    competition = orchestrator.competition
    first, second = competition.competition_history
    assert len(first.hypothesis_ids) == 6
    assert second.hypothesis_ids == ("3.1.1", "3.2.1", "3.3.1")
    assert sorted(competition.hypotheses) == ["3.1.1", "3.2.1", "3.3.1"]
    assert competition.get_hypothesis("3.1.1").supporting_evidence == ["4.1", "4.2"]


@pytest.mark.asyncio
async def test_second_run_starts_a_fresh_competition(settings: Settings) -> None:
    reasoner = TaggingReasoner(tag="fibre")
    orchestrator = ResearchOrchestrator(reasoner=reasoner, settings=settings)
    await orchestrator.run(QUESTION, through_stage=4)

    reasoner.tag = "sleep"
    state = await orchestrator.run("Does sleep duration shape gut microbiome diversity?", through_stage=3)

    competition = orchestrator.competition
    assert competition.get_hypothesis("3.1.1").description.endswith("(sleep)")
    assert state.graph.get_node("3.1.1").metadata.value.endswith("(sleep)")
    assert [r.id for r in competition.competition_history] == ["round-1"]
    assert len(competition.evidence) == 0
