"""Tests for the nine-stage engine against a scripted reasoner."""

from __future__ import annotations

import pytest

from conftest import QUESTION, DuplicatingReasoner, ScriptedReasoner
from thoughtgraph.config import Settings
from thoughtgraph.errors import StageExecutionError, StageOrderError, ValidationError
from thoughtgraph.graph import EdgeType, GraphStore, NodeType, mean_confidence
from thoughtgraph.pipeline.schemas import ResearchContext, StageResult
from thoughtgraph.pipeline.stage_engine import StageEngine


class BareStringReasoner(ScriptedReasoner):
    """Frames the question with single strings where lists are expected."""

    def _structured(self, prompt: str) -> dict:
        data = super()._structured(prompt)
        if "objectives" in data:
            data["objectives"] = "Quantify the fibre effect"
            data["constraints"] = "Observational data only"
        return data


async def run_through(
    engine: StageEngine,
    last_stage: int,
    graph: GraphStore | None = None,
) -> tuple[GraphStore, ResearchContext, list[StageResult]]:
    graph = graph or GraphStore()
    context = ResearchContext(topic=QUESTION)
    results: list[StageResult] = []
    for index in range(1, last_stage + 1):
        result = await engine.run_stage(index, graph, context, QUESTION if index == 1 else None)
        context = result.context
        results.append(result)
    return graph, context, results


class TestStageOrder:
    """Tests for ordering and global failures."""

    @pytest.mark.asyncio
    async def test_stage_before_prerequisite_is_rejected(self, reasoner: ScriptedReasoner, settings: Settings) -> None:
        engine = StageEngine(reasoner, settings)

        with pytest.raises(StageOrderError) as exc_info:
            await engine.run_stage(2, GraphStore(), ResearchContext(topic=QUESTION))

        assert exc_info.value.stage_index == 2
        assert reasoner.calls == []

    @pytest.mark.asyncio
    async def test_stage_index_out_of_range(self, reasoner: ScriptedReasoner, settings: Settings) -> None:
        engine = StageEngine(reasoner, settings)
        with pytest.raises(StageOrderError):
            await engine.run_stage(10, GraphStore(), ResearchContext())

    @pytest.mark.asyncio
    async def test_stage_cannot_run_twice(self, reasoner: ScriptedReasoner, settings: Settings) -> None:
        engine = StageEngine(reasoner, settings)
        graph, context, _ = await run_through(engine, 1)

        with pytest.raises(StageOrderError):
            await engine.run_stage(1, graph, context, QUESTION)

    @pytest.mark.asyncio
    async def test_reflection_requires_a_report(self, reasoner: ScriptedReasoner, settings: Settings) -> None:
        engine = StageEngine(reasoner, settings)
        graph, context, _ = await run_through(engine, 1)
        graph.mark_stage(7)

        with pytest.raises(StageOrderError):
            await engine.run_stage(8, graph, context)

    @pytest.mark.asyncio
    async def test_initialization_failure_commits_nothing(self, settings: Settings) -> None:
        engine = StageEngine(ScriptedReasoner(fail_on=("Frame the following",)), settings)
        graph = GraphStore()

        with pytest.raises(StageExecutionError) as exc_info:
            await engine.run_stage(1, graph, ResearchContext(), QUESTION)

        assert exc_info.value.stage_index == 1
        assert graph.stage == 0
        assert graph.nodes() == []

    @pytest.mark.asyncio
    async def test_empty_question_rejected(self, reasoner: ScriptedReasoner, settings: Settings) -> None:
        engine = StageEngine(reasoner, settings)
        with pytest.raises(ValidationError):
            await engine.run_stage(1, GraphStore(), ResearchContext(), "   ")


class TestStages:
    """Tests for per-stage graph deltas and branch failures."""

    @pytest.mark.asyncio
    async def test_initialization_builds_root_and_knowledge(
        self, reasoner: ScriptedReasoner, settings: Settings
    ) -> None:
        graph, context, results = await run_through(StageEngine(reasoner, settings), 1)

        root = graph.get_node("1.0")
        assert root is not None
        assert root.type == NodeType.ROOT
        assert root.confidence == [0.8, 0.8, 0.8, 0.8]
        assert [n.id for n in graph.nodes(NodeType.KNOWLEDGE)] == ["K1"]
        assert [(e.source, e.target, e.type) for e in graph.edges()] == [("K1", "1.0", EdgeType.PREREQUISITE)]
        assert context.field == "Microbiology"
        assert len(context.objectives) == 2
        assert graph.stage == 1

    @pytest.mark.asyncio
    async def test_bare_string_objectives_are_not_split(self, settings: Settings) -> None:
        graph, context, _ = await run_through(StageEngine(BareStringReasoner(), settings), 1)

        assert context.objectives == ["Quantify the fibre effect"]
        assert context.constraints == ["Observational data only"]

    @pytest.mark.asyncio
    async def test_single_dimension_given_as_string(self, reasoner: ScriptedReasoner, settings: Settings) -> None:
        engine = StageEngine(reasoner, settings)
        graph, context, _ = await run_through(engine, 1)

        await engine.run_stage(2, graph, context, "Scope")

        assert [(n.id, n.label) for n in graph.nodes(NodeType.DIMENSION)] == [("2.1", "Scope")]

    @pytest.mark.asyncio
    async def test_input_context_is_not_mutated(self, reasoner: ScriptedReasoner, settings: Settings) -> None:
        context = ResearchContext(topic=QUESTION)
        result = await StageEngine(reasoner, settings).run_stage(1, GraphStore(), context, QUESTION)

        assert context.field == ""
        assert result.context.field == "Microbiology"

    @pytest.mark.asyncio
    async def test_failed_dimension_is_flagged_not_raised(self, settings: Settings) -> None:
        engine = StageEngine(ScriptedReasoner(fail_on=("Analyze the 'Constraints' dimension",)), settings)

        graph, context, results = await run_through(engine, 2)

        dimensions = {n.id: n for n in graph.nodes(NodeType.DIMENSION)}
        assert list(dimensions) == ["2.1", "2.2", "2.3"]
        assert dimensions["2.2"].metadata.extra["analysis_failed"] is True
        assert "analysis_failed" not in dimensions["2.1"].metadata.extra
        assert [f.item for f in results[-1].failures] == ["Constraints"]
        assert len(context.biases_detected) == 1
        assert all(e.type == EdgeType.SUPPORTIVE for e in graph.edges() if e.source == "1.0")

    @pytest.mark.asyncio
    async def test_failed_hypothesis_branch_skips_dimension(self, settings: Settings) -> None:
        engine = StageEngine(ScriptedReasoner(fail_on=("Dimension: Constraints",)), settings)

        graph, context, results = await run_through(engine, 3)

        hypotheses = [n.id for n in graph.nodes(NodeType.HYPOTHESIS)]
        assert hypotheses == ["3.1.1", "3.1.2", "3.3.1", "3.3.2"]
        assert [f.item for f in results[-1].failures] == ["2.2"]
        assert len(context.hypotheses) == 4

        first = graph.get_node("3.1.1")
        assert first.metadata.parent_dimension == "2.1"
        assert first.metadata.extra["traits"]["explanatory_power"] == 0.8
        assert first.metadata.extra["scope"] == "regional"
        assert first.metadata.impact_score == pytest.approx(0.7)
        assert graph.get_node("3.1.2").metadata.impact_score == pytest.approx(0.75)

    @pytest.mark.asyncio
    async def test_weak_evidence_is_pruned(self, settings: Settings) -> None:
        engine = StageEngine(ScriptedReasoner(weak_evidence=("Interventions aimed at",)), settings)

        graph, context, results = await run_through(engine, 4)

        links = results[-1].artifacts["evidence"]
        assert len(links) == 6
        assert {e.id for e in graph.nodes(NodeType.EVIDENCE)} == {f"4.{i}" for i in range(1, 7)}
        assert mean_confidence(graph.get_node("4.2")) == pytest.approx(0.2)
        edge_types = {e.type for e in graph.edges() if e.target.startswith("4.")}
        assert edge_types == {EdgeType.CAUSAL_DIRECT}

        prune_result = await engine.run_stage(5, graph, context)

        assert prune_result.artifacts["pruned"] == ["4.2", "4.4", "4.6"]
        assert [n.id for n in graph.nodes(NodeType.EVIDENCE)] == ["4.1", "4.3", "4.5"]
        assert graph.has_node("1.0")
        live = {n.id for n in graph.nodes()}
        assert all(e.source in live and e.target in live for e in graph.edges())

    @pytest.mark.asyncio
    async def test_failed_evidence_branch_gets_zero_confidence_placeholder(self, settings: Settings) -> None:
        marker = "bearing on: Interventions aimed at Scope"
        engine = StageEngine(ScriptedReasoner(fail_on=(marker,)), settings)

        graph, context, results = await run_through(engine, 5)

        evidence_result = results[3]
        failed = [link for link in evidence_result.artifacts["evidence"] if link.failed]
        assert [link.hypothesis_id for link in failed] == ["3.1.2"]
        assert [f.item for f in evidence_result.failures] == ["3.1.2"]
        archived = {n.id: n for n in graph.pruned_nodes()}
        assert archived[failed[0].evidence_id].metadata.extra["evidence_failed"] is True
        assert not graph.has_node(failed[0].evidence_id)

    @pytest.mark.asyncio
    async def test_near_duplicate_siblings_are_merged(self, settings: Settings) -> None:
        engine = StageEngine(DuplicatingReasoner(), settings)

        graph, context, results = await run_through(engine, 5)

        assert [n.id for n in graph.nodes(NodeType.HYPOTHESIS)] == ["3.1.1", "3.2.1", "3.3.1"]
        merged = graph.get_node("3.1.1")
        assert merged.metadata.merged_from == ["3.1.2"]
        assert {n.id for n in graph.children("3.1.1")} == {"4.1", "4.2"}

    @pytest.mark.asyncio
    async def test_subgraph_extraction_ranks_clusters(self, settings: Settings) -> None:
        engine = StageEngine(ScriptedReasoner(importance="low"), settings)

        graph, context, results = await run_through(engine, 6)

        rankings = results[-1].artifacts["rankings"]
        assert len(rankings) == 6
        assert all(r.importance == pytest.approx(0.3) and not r.high_impact for r in rankings)
        assert rankings[0].dimension_id == "2.1"
        assert context.prioritized_clusters == []
        assert results[-1].delta.is_empty
        assert graph.stage == 6

    @pytest.mark.asyncio
    async def test_full_run_produces_synthesis(self, reasoner: ScriptedReasoner, settings: Settings) -> None:
        graph, context, results = await run_through(StageEngine(reasoner, settings), 9)

        assert graph.stage == 9
        assert len(context.prioritized_clusters) == 6
        assert context.report.startswith("## Executive Summary")
        assert context.quality_overall == pytest.approx(0.8)
        assert context.quality_issue_count == 0
        assert "### Summary" in context.final_summary

        synthesis = graph.get_node("9.0")
        assert synthesis.type == NodeType.SYNTHESIS
        assert synthesis.confidence == pytest.approx([0.8, 0.8, 0.8, 0.8])
        assert any(e.source == "1.0" and e.target == "9.0" for e in graph.edges())
        assert all(not r.failures for r in results)

    @pytest.mark.asyncio
    async def test_failed_report_section_is_marked(self, settings: Settings) -> None:
        engine = StageEngine(ScriptedReasoner(fail_on=("Write the 'Methodology' section",)), settings)

        graph, context, results = await run_through(engine, 8)

        assert "## Methodology\n\n[Section unavailable:" in context.report
        assert [f.item for f in results[6].failures] == ["Methodology"]
        assert context.quality_overall == pytest.approx(0.8)
