"""
Nine-stage research state machine.

Each stage reads the graph left by the previous stage, fans its
per-item reasoning out over a bounded pool, joins the branches and
commits one graph delta. A stage commits everything or nothing; a failed
branch becomes a flagged placeholder rather than an exception.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

import numpy as np
from pydantic import BaseModel

from thoughtgraph.config import Settings, get_settings
from thoughtgraph.errors import ReasonerError, StageExecutionError, StageOrderError, ValidationError
from thoughtgraph.graph.evidence import EvidenceWeight
from thoughtgraph.graph.schemas import (
    CONFIDENCE_AXES,
    EdgeType,
    GraphEdge,
    GraphNode,
    NodeMetadata,
    NodeType,
    mean_confidence,
)
from thoughtgraph.graph.store import GraphDelta, GraphStore, MergeSpec
from thoughtgraph.pipeline import parsing
from thoughtgraph.pipeline.fanout import Branch, fan_out
from thoughtgraph.pipeline.schemas import (
    FINAL_COMPONENTS,
    QUALITY_ASPECTS,
    REPORT_SECTIONS,
    BranchFailure,
    ClusterRanking,
    EvidenceLink,
    QualityAudit,
    ReportSection,
    ResearchContext,
    Stage,
    StageResult,
)
from thoughtgraph.reasoner.base import Reasoner, ReasonMode, ReasonOutput, StructuredResult
from thoughtgraph.reasoner.json_repair import extract_json_object
from thoughtgraph.similarity import text_similarity

logger = logging.getLogger(__name__)

ROOT_ID = "1.0"
SYNTHESIS_ID = "9.0"

ROOT_CONFIDENCE = [0.8] * len(CONFIDENCE_AXES)
KNOWLEDGE_CONFIDENCE = [1.0] * len(CONFIDENCE_AXES)
FAILED_CONFIDENCE = [0.0] * len(CONFIDENCE_AXES)
NEUTRAL_CONFIDENCE = [0.5] * len(CONFIDENCE_AXES)

DIMENSION_EDGE_CONFIDENCE = 0.8

# Node type that must be live before a stage may run.
_REQUIRED_INPUT: dict[Stage, NodeType] = {
    Stage.DECOMPOSITION: NodeType.ROOT,
    Stage.HYPOTHESIS_GENERATION: NodeType.DIMENSION,
    Stage.EVIDENCE_INTEGRATION: NodeType.HYPOTHESIS,
    Stage.PRUNING_MERGING: NodeType.EVIDENCE,
    Stage.SUBGRAPH_EXTRACTION: NodeType.ROOT,
    Stage.COMPOSITION: NodeType.ROOT,
    Stage.REFLECTION: NodeType.ROOT,
    Stage.FINAL_ANALYSIS: NodeType.ROOT,
}


class _EvidenceDraft(BaseModel):
    """Output of the three read-only evidence micro-passes."""

    harvest: str
    citations: str
    statistics: dict[str, Any]


def _short(text: str, limit: int = 80) -> str:
    text = " ".join((text or "").split())
    return text if len(text) <= limit else text[: limit - 3].rstrip() + "..."


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, str):
        return [value]
    return list(value or [])


def _edge(source: str, target: str, edge_type: EdgeType, confidence: float) -> GraphEdge:
    return GraphEdge(
        id=f"{source}->{target}",
        source=source,
        target=target,
        type=edge_type,
        confidence=confidence,
    )


def _failure(stage: Stage, branch: Branch[Any, Any], item: str) -> BranchFailure:
    return BranchFailure(stage=stage.value, item=item, error=str(branch.error))


class StageEngine:
    """
    Runs the nine research stages against a graph store.

    Stages must run in order; each one validates that the previous stage
    completed and that its input nodes exist before calling the reasoner.
    """

    def __init__(self, reasoner: Reasoner, settings: Settings | None = None) -> None:
        """
        Initialize the stage engine.

        Args:
            reasoner: Collaborator used for every natural-language call.
            settings: Pipeline settings (uses cached settings if not provided).
        """
        self._reasoner = reasoner
        self._settings = settings or get_settings()
        self._handlers: dict[
            Stage,
            Callable[[GraphStore, ResearchContext, Any], Awaitable[StageResult]],
        ] = {
            Stage.INITIALIZATION: self._initialize,
            Stage.DECOMPOSITION: self._decompose,
            Stage.HYPOTHESIS_GENERATION: self._generate_hypotheses,
            Stage.EVIDENCE_INTEGRATION: self._integrate_evidence,
            Stage.PRUNING_MERGING: self._prune_and_merge,
            Stage.SUBGRAPH_EXTRACTION: self._extract_subgraphs,
            Stage.COMPOSITION: self._compose,
            Stage.REFLECTION: self._reflect,
            Stage.FINAL_ANALYSIS: self._final_analysis,
        }

    async def run_stage(
        self,
        stage_index: int,
        graph: GraphStore,
        context: ResearchContext,
        user_input: Any = None,
    ) -> StageResult:
        """
        Run one stage and commit its delta to ``graph``.

        Args:
            stage_index: 1 to 9.
            graph: Store holding the output of the previous stages.
            context: Research context after the previous stage. It is not
                modified; the updated copy is returned.
            user_input: Task description for stage 1, an optional list of
                dimension names for stage 2, ignored elsewhere.

        Returns:
            The committed delta, updated context, narrative and any
            recorded branch failures.

        Raises:
            StageOrderError: If the stage is out of order or its inputs are missing.
            StageExecutionError: If a global reasoner call failed; nothing is committed.
        """
        stage = self._check_order(stage_index, graph, context)
        logger.info(f"Stage {stage.value} ({stage.title}) starting")

        result = await self._handlers[stage](graph, context.model_copy(deep=True), user_input)
        graph.commit(result.delta, stage=stage.value)

        logger.info(
            f"Stage {stage.value} ({stage.title}) committed {len(result.delta.nodes)} node(s), "
            f"{len(result.delta.edges)} edge(s); {len(result.failures)} branch failure(s)"
        )
        return result

    def _check_order(self, stage_index: int, graph: GraphStore, context: ResearchContext) -> Stage:
        try:
            stage = Stage(stage_index)
        except ValueError:
            raise StageOrderError(stage_index, "stage index must be between 1 and 9") from None

        if graph.stage != stage.value - 1:
            raise StageOrderError(
                stage_index,
                f"last completed stage is {graph.stage}, expected {stage.value - 1}",
            )
        required = _REQUIRED_INPUT.get(stage)
        if required is not None and not graph.nodes(required):
            raise StageOrderError(stage_index, f"no {required.value} nodes in the graph")
        if stage == Stage.REFLECTION and not context.report:
            raise StageOrderError(stage_index, "no composed report to reflect on")
        return stage

    async def _fan_out(self, items: list[Any], worker: Callable[[Any], Awaitable[Any]]) -> list[Branch[Any, Any]]:
        return await fan_out(items, worker, self._settings.max_concurrent_calls)

    @staticmethod
    def _header(context: ResearchContext) -> str:
        lines = [f"Research question: {context.topic}"]
        if context.field:
            lines.append(f"Field: {context.field}")
        if context.objectives:
            lines.append("Objectives: " + "; ".join(context.objectives))
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Stage 1: initialization
    # ------------------------------------------------------------------

    async def _initialize(self, graph: GraphStore, context: ResearchContext, user_input: Any) -> StageResult:
        task = str(user_input or context.topic or "").strip()
        if not task:
            raise ValidationError(["research question must not be empty"])

        prompt = (
            "Frame the following research question. Respond with JSON containing "
            '"field" (string), "objectives" (list of strings), "constraints" (list of strings) '
            'and "summary" (string).\n\n'
            f"Research question: {task}"
        )
        try:
            output = await self._reasoner.reason(prompt, ReasonMode.STRUCTURED)
        except ReasonerError as e:
            raise StageExecutionError(Stage.INITIALIZATION.value, e) from e
        data = output.data if isinstance(output, StructuredResult) else extract_json_object(output)

        context.topic = task
        context.field = str(data.get("field") or "General")
        context.objectives = [str(o) for o in _as_list(data.get("objectives")) if str(o).strip()]
        context.constraints = [str(c) for c in _as_list(data.get("constraints")) if str(c).strip()]

        root = GraphNode(
            id=ROOT_ID,
            label="Research question",
            type=NodeType.ROOT,
            confidence=list(ROOT_CONFIDENCE),
            metadata=NodeMetadata(
                source_description="Task description",
                value=task,
                notes=str(data.get("summary") or ""),
                disciplinary_tags=[context.field],
            ),
        )
        nodes = [root]
        edges: list[GraphEdge] = []
        for index, statement in enumerate(self._settings.knowledge_nodes, start=1):
            knowledge = GraphNode(
                id=f"K{index}",
                label=_short(statement, 40),
                type=NodeType.KNOWLEDGE,
                confidence=list(KNOWLEDGE_CONFIDENCE),
                metadata=NodeMetadata(source_description="Background knowledge", value=statement),
            )
            nodes.append(knowledge)
            edges.append(_edge(knowledge.id, ROOT_ID, EdgeType.PREREQUISITE, 1.0))

        narrative = (
            f"Initialized research on '{_short(task)}' in {context.field} with "
            f"{len(context.objectives)} objective(s) and {len(edges)} background knowledge node(s)."
        )
        return StageResult(
            stage=Stage.INITIALIZATION,
            delta=GraphDelta(nodes=nodes, edges=edges),
            context=context,
            narrative=narrative,
        )

    # ------------------------------------------------------------------
    # Stage 2: decomposition
    # ------------------------------------------------------------------

    async def _decompose(self, graph: GraphStore, context: ResearchContext, user_input: Any) -> StageResult:
        requested = _as_list(user_input or self._settings.decomposition_dimensions)
        dimensions = [str(d) for d in requested if str(d).strip()]

        async def analyze(dimension: str) -> str:
            prompt = (
                f"{self._header(context)}\n\n"
                f"Analyze the '{dimension}' dimension of this research question in a short paragraph."
            )
            return parsing.as_text(await self._reasoner.reason(prompt, ReasonMode.PLAIN))

        branches = await self._fan_out(dimensions, analyze)

        nodes: list[GraphNode] = []
        edges: list[GraphEdge] = []
        failures: list[BranchFailure] = []
        for index, branch in enumerate(branches, start=1):
            node_id = f"2.{index}"
            analysis = branch.result if branch.ok else ""
            extra: dict[str, Any] = {}
            if not branch.ok:
                extra = {"analysis_failed": True, "error": str(branch.error)}
                failures.append(_failure(Stage.DECOMPOSITION, branch, branch.item))
            nodes.append(
                GraphNode(
                    id=node_id,
                    label=branch.item,
                    type=NodeType.DIMENSION,
                    confidence=list(ROOT_CONFIDENCE),
                    metadata=NodeMetadata(
                        source_description="Decomposition analysis",
                        value=analysis,
                        disciplinary_tags=[branch.item],
                        extra=extra,
                    ),
                )
            )
            edges.append(_edge(ROOT_ID, node_id, EdgeType.SUPPORTIVE, DIMENSION_EDGE_CONFIDENCE))

            lowered = branch.item.lower()
            if analysis and "bias" in lowered:
                context.biases_detected.append(_short(analysis, 200))
            elif analysis and "gap" in lowered:
                context.knowledge_gaps.append(_short(analysis, 200))

        narrative = f"Decomposed the question into {len(nodes)} dimension(s): {', '.join(dimensions)}."
        if failures:
            narrative += f" Analysis failed for: {', '.join(f.item for f in failures)}."
        return StageResult(
            stage=Stage.DECOMPOSITION,
            delta=GraphDelta(nodes=nodes, edges=edges),
            context=context,
            narrative=narrative,
            failures=failures,
        )

    # ------------------------------------------------------------------
    # Stage 3: hypothesis generation
    # ------------------------------------------------------------------

    async def _generate_hypotheses(self, graph: GraphStore, context: ResearchContext, user_input: Any) -> StageResult:
        dimensions = graph.nodes(NodeType.DIMENSION)

        async def propose(dimension: GraphNode) -> list[dict[str, Any]]:
            prompt = (
                f"{self._header(context)}\n\n"
                f"Dimension: {dimension.label}\n{dimension.metadata.value}\n\n"
                "Propose 2 to 3 testable hypotheses scoped to this dimension. Respond with JSON: "
                '{"hypotheses": [{"statement": str, "falsification_criteria": str, "impact": float, '
                '"explanatory_power": float, "falsifiability": float, "simplicity": float, '
                '"novelty": float, "testability": float, "scope": "local|regional|global"}]}'
            )
            records = parsing.hypotheses_from_output(await self._reasoner.reason(prompt, ReasonMode.STRUCTURED))
            if not records:
                raise ReasonerError(f"No hypotheses returned for dimension {dimension.label}")
            return records

        branches = await self._fan_out(dimensions, propose)

        nodes: list[GraphNode] = []
        edges: list[GraphEdge] = []
        failures: list[BranchFailure] = []
        for branch in branches:
            dimension: GraphNode = branch.item
            if not branch.ok:
                failures.append(_failure(Stage.HYPOTHESIS_GENERATION, branch, dimension.id))
                continue
            lineage = dimension.id.split(".", 1)[1]
            for j, record in enumerate(branch.result):
                node_id = f"3.{lineage}.{j + 1}"
                statement = record["statement"]
                traits = {
                    name: parsing.unit_or(record.get(name), 0.5)
                    for name in ("explanatory_power", "falsifiability", "simplicity", "novelty", "testability")
                }
                nodes.append(
                    GraphNode(
                        id=node_id,
                        label=_short(statement),
                        type=NodeType.HYPOTHESIS,
                        confidence=list(NEUTRAL_CONFIDENCE),
                        metadata=NodeMetadata(
                            source_description=f"Generated for dimension {dimension.label}",
                            value=statement,
                            parent_dimension=dimension.id,
                            falsification_criteria=str(record.get("falsification_criteria") or ""),
                            impact_score=parsing.unit_or(record.get("impact"), min(1.0, 0.7 + j * 0.05)),
                            disciplinary_tags=[dimension.label],
                            extra={"traits": traits, "scope": str(record.get("scope") or "local")},
                        ),
                    )
                )
                edges.append(_edge(dimension.id, node_id, EdgeType.SUPPORTIVE, 0.7))
                context.hypotheses.append(statement)

        narrative = f"Generated {len(nodes)} hypothesis(es) across {len(dimensions) - len(failures)} dimension(s)."
        if failures:
            narrative += f" No hypotheses for failed dimension(s): {', '.join(f.item for f in failures)}."
        return StageResult(
            stage=Stage.HYPOTHESIS_GENERATION,
            delta=GraphDelta(nodes=nodes, edges=edges),
            context=context,
            narrative=narrative,
            failures=failures,
        )

    # ------------------------------------------------------------------
    # Stage 4: evidence integration
    # ------------------------------------------------------------------

    async def _gather_evidence(self, hypothesis: GraphNode, context: ResearchContext) -> _EvidenceDraft:
        statement = hypothesis.metadata.value or hypothesis.label

        # 4.1 harvest
        harvest = parsing.as_text(
            await self._reasoner.reason(
                f"{self._header(context)}\n\nFind published evidence bearing on: {statement}",
                ReasonMode.SEARCH,
            )
        )
        # 4.2 citations
        citations = parsing.as_text(
            await self._reasoner.reason(
                f"Format the sources in the following findings as a citation list:\n\n{harvest}",
                ReasonMode.PLAIN,
            )
        )
        # 4.3 statistics
        stats_output = await self._reasoner.reason(
            f"Hypothesis: {statement}\n\nEvidence:\n{harvest}\n\n"
            "Assess this evidence. Respond with JSON containing the numbers in [0, 1] "
            f"{', '.join(CONFIDENCE_AXES)}, statistical_power, reliability, relevance, recency, "
            'source_credibility, methodological_quality, and "direction" ("supports" or "contradicts").',
            ReasonMode.STRUCTURED,
        )
        statistics = stats_output.data if isinstance(stats_output, StructuredResult) else {}
        return _EvidenceDraft(harvest=harvest, citations=citations, statistics=statistics)

    async def _integrate_evidence(self, graph: GraphStore, context: ResearchContext, user_input: Any) -> StageResult:
        hypotheses = graph.nodes(NodeType.HYPOTHESIS)
        branches = await self._fan_out(hypotheses, lambda h: self._gather_evidence(h, context))

        # 4.4 graph commit
        nodes: list[GraphNode] = []
        edges: list[GraphEdge] = []
        links: list[EvidenceLink] = []
        failures: list[BranchFailure] = []
        for index, branch in enumerate(branches, start=1):
            hypothesis: GraphNode = branch.item
            evidence_id = f"4.{index}"
            base = NodeMetadata(
                source_description="Evidence integration",
                parent_hypothesis=hypothesis.id,
                parent_dimension=hypothesis.metadata.parent_dimension,
                disciplinary_tags=list(hypothesis.metadata.disciplinary_tags),
            )

            if not branch.ok:
                failures.append(_failure(Stage.EVIDENCE_INTEGRATION, branch, hypothesis.id))
                confidence = list(FAILED_CONFIDENCE)
                metadata = base.model_copy(update={"extra": {"evidence_failed": True, "error": str(branch.error)}})
                weight = EvidenceWeight(evidence_id=evidence_id, weight=0.0, reliability=0.0)
                supporting = True
            else:
                draft: _EvidenceDraft = branch.result
                stats = draft.statistics
                confidence = parsing.confidence_from_structured(stats) or parsing.confidence_from_text(
                    f"{draft.harvest}\n{draft.citations}"
                )
                supporting = str(stats.get("direction", "supports")).lower() != "contradicts"
                metadata = base.model_copy(
                    update={
                        "value": draft.harvest,
                        "notes": draft.citations,
                        "extra": {
                            "statistical_power": parsing.unit_or(stats.get("statistical_power"), 0.5),
                            "direction": "supports" if supporting else "contradicts",
                        },
                    }
                )
                weight = EvidenceWeight(
                    evidence_id=evidence_id,
                    weight=float(np.mean(confidence)),
                    reliability=parsing.unit_or(stats.get("reliability"), confidence[0]),
                    relevance=parsing.unit_or(stats.get("relevance"), 0.5),
                    recency=parsing.unit_or(stats.get("recency"), 0.5),
                    source_credibility=parsing.unit_or(stats.get("source_credibility"), confidence[3]),
                    methodological_quality=parsing.unit_or(stats.get("methodological_quality"), confidence[2]),
                )

            nodes.append(
                GraphNode(
                    id=evidence_id,
                    label=f"Evidence for {hypothesis.id}",
                    type=NodeType.EVIDENCE,
                    confidence=confidence,
                    metadata=metadata,
                )
            )
            edges.append(_edge(hypothesis.id, evidence_id, EdgeType.CAUSAL_DIRECT, confidence[0]))
            links.append(
                EvidenceLink(
                    evidence_id=evidence_id,
                    hypothesis_id=hypothesis.id,
                    supporting=supporting,
                    weight=weight,
                    failed=not branch.ok,
                )
            )

        narrative = f"Integrated {len(nodes) - len(failures)} evidence node(s) for {len(hypotheses)} hypothesis(es)."
        if failures:
            narrative += f" Evidence gathering failed for: {', '.join(f.item for f in failures)} (placeholders added)."
        return StageResult(
            stage=Stage.EVIDENCE_INTEGRATION,
            delta=GraphDelta(nodes=nodes, edges=edges),
            context=context,
            narrative=narrative,
            failures=failures,
            artifacts={"evidence": links},
        )

    # ------------------------------------------------------------------
    # Stage 5: pruning and merging
    # ------------------------------------------------------------------

    async def _prune_and_merge(self, graph: GraphStore, context: ResearchContext, user_input: Any) -> StageResult:
        threshold = self._settings.prune_threshold
        prune_ids = [n.id for n in graph.nodes(NodeType.EVIDENCE) if mean_confidence(n) < threshold]

        by_dimension: dict[str | None, list[GraphNode]] = {}
        for hypothesis in graph.nodes(NodeType.HYPOTHESIS):
            by_dimension.setdefault(hypothesis.metadata.parent_dimension, []).append(hypothesis)

        merges: list[MergeSpec] = []
        for siblings in by_dimension.values():
            absorbed: set[str] = set()
            for i, target in enumerate(siblings):
                if target.id in absorbed:
                    continue
                sources = [
                    other.id
                    for other in siblings[i + 1 :]
                    if other.id not in absorbed
                    and text_similarity(target.metadata.value, other.metadata.value) >= self._settings.merge_similarity
                ]
                if sources:
                    absorbed.update(sources)
                    merges.append(MergeSpec(source_ids=sources, target_id=target.id))

        merged_count = sum(len(m.source_ids) for m in merges)
        narrative = (
            f"Pruned {len(prune_ids)} evidence node(s) below mean confidence {threshold:.2f}; "
            f"merged {merged_count} near-duplicate hypothesis(es)."
        )
        return StageResult(
            stage=Stage.PRUNING_MERGING,
            delta=GraphDelta(prune_ids=prune_ids, merges=merges),
            context=context,
            narrative=narrative,
            artifacts={"pruned": prune_ids, "merges": merges},
        )

    # ------------------------------------------------------------------
    # Stage 6: subgraph extraction
    # ------------------------------------------------------------------

    def _cluster_of(self, graph: GraphStore, evidence: GraphNode) -> tuple[GraphNode | None, GraphNode | None]:
        hypotheses = [n for n in graph.parents(evidence.id) if n.type == NodeType.HYPOTHESIS]
        hypothesis = hypotheses[0] if hypotheses else None
        dimension = None
        if hypothesis is not None:
            dimensions = [n for n in graph.parents(hypothesis.id) if n.type == NodeType.DIMENSION]
            dimension = dimensions[0] if dimensions else None
        return hypothesis, dimension

    async def _extract_subgraphs(self, graph: GraphStore, context: ResearchContext, user_input: Any) -> StageResult:
        evidence_nodes = graph.nodes(NodeType.EVIDENCE)
        clusters = [(e, *self._cluster_of(graph, e)) for e in evidence_nodes]

        async def assess(cluster: tuple[GraphNode, GraphNode | None, GraphNode | None]) -> ReasonOutput:
            evidence, hypothesis, dimension = cluster
            prompt = (
                f"{self._header(context)}\n\n"
                f"Dimension: {dimension.label if dimension else 'n/a'}\n"
                f"Hypothesis: {hypothesis.metadata.value if hypothesis else 'n/a'}\n"
                f"Evidence: {_short(evidence.metadata.value, 600)}\n\n"
                'Rate the importance of this evidence cluster. Respond with JSON: '
                '{"importance": "high|medium|low", "rationale": str}'
            )
            return await self._reasoner.reason(prompt, ReasonMode.STRUCTURED)

        branches = await self._fan_out(clusters, assess)

        rankings: list[ClusterRanking] = []
        failures: list[BranchFailure] = []
        for branch in branches:
            evidence, hypothesis, dimension = branch.item
            if branch.ok:
                importance, assessment = parsing.importance_from_output(branch.result)
            else:
                failures.append(_failure(Stage.SUBGRAPH_EXTRACTION, branch, evidence.id))
                importance, assessment = mean_confidence(evidence), "Assessment unavailable; using mean confidence"
            rankings.append(
                ClusterRanking(
                    evidence_id=evidence.id,
                    hypothesis_id=hypothesis.id if hypothesis else None,
                    dimension_id=dimension.id if dimension else None,
                    importance=importance,
                    high_impact=importance >= self._settings.high_impact_threshold,
                    assessment=_short(assessment, 300),
                )
            )

        rankings.sort(key=lambda r: r.importance, reverse=True)
        context.prioritized_clusters = [r.evidence_id for r in rankings if r.high_impact]

        narrative = (
            f"Ranked {len(rankings)} evidence cluster(s); "
            f"{len(context.prioritized_clusters)} flagged as high impact."
        )
        if failures:
            narrative += f" Importance assessment failed for: {', '.join(f.item for f in failures)}."
        return StageResult(
            stage=Stage.SUBGRAPH_EXTRACTION,
            context=context,
            narrative=narrative,
            failures=failures,
            artifacts={"rankings": rankings},
        )

    # ------------------------------------------------------------------
    # Stage 7: composition
    # ------------------------------------------------------------------

    def _evidence_digest(self, graph: GraphStore, context: ResearchContext, limit: int = 8) -> str:
        prioritized = [graph.get_node(i) for i in context.prioritized_clusters]
        others = [n for n in graph.nodes(NodeType.EVIDENCE) if n.id not in context.prioritized_clusters]
        lines = []
        for node in [n for n in prioritized if n is not None] + others:
            lines.append(f"- [{node.id}, confidence {mean_confidence(node):.2f}] {_short(node.metadata.value, 240)}")
        return "\n".join(lines[:limit]) or "- (no retained evidence)"

    async def _compose(self, graph: GraphStore, context: ResearchContext, user_input: Any) -> StageResult:
        digest = self._evidence_digest(graph, context)
        hypotheses = "\n".join(f"- {h}" for h in context.hypotheses[:10]) or "- (none)"

        async def write(section: str) -> str:
            prompt = (
                f"{self._header(context)}\n\nHypotheses:\n{hypotheses}\n\nKey evidence:\n{digest}\n\n"
                f"Write the '{section}' section of the research report."
            )
            return parsing.as_text(await self._reasoner.reason(prompt, ReasonMode.PLAIN))

        branches = await self._fan_out(REPORT_SECTIONS, write)

        sections: list[ReportSection] = []
        failures: list[BranchFailure] = []
        for branch in branches:
            if branch.ok:
                sections.append(ReportSection(title=branch.item, content=branch.result.strip()))
            else:
                failures.append(_failure(Stage.COMPOSITION, branch, branch.item))
                sections.append(
                    ReportSection(title=branch.item, content=f"[Section unavailable: {branch.error}]", failed=True)
                )

        context.report = "\n\n".join(f"## {s.title}\n\n{s.content}" for s in sections)
        narrative = f"Composed a report with {len(sections) - len(failures)} of {len(sections)} section(s)."
        if failures:
            narrative += f" Missing: {', '.join(f.item for f in failures)}."
        return StageResult(
            stage=Stage.COMPOSITION,
            context=context,
            narrative=narrative,
            failures=failures,
            artifacts={"sections": sections},
        )

    # ------------------------------------------------------------------
    # Stage 8: reflection
    # ------------------------------------------------------------------

    async def _reflect(self, graph: GraphStore, context: ResearchContext, user_input: Any) -> StageResult:
        report = _short(context.report, 6000)

        async def audit(aspect: str) -> ReasonOutput:
            prompt = (
                f"{self._header(context)}\n\nReport:\n{report}\n\n"
                f"Audit the report for {aspect}. State 'quality: <score between 0.0 and 1.0>' "
                "and describe any weakness, gap or issue you find."
            )
            return await self._reasoner.reason(prompt, ReasonMode.PLAIN)

        branches = await self._fan_out(QUALITY_ASPECTS, audit)

        audits: list[QualityAudit] = []
        failures: list[BranchFailure] = []
        for branch in branches:
            if branch.ok:
                score, issue, notes = parsing.quality_from_output(branch.result)
                audits.append(QualityAudit(aspect=branch.item, score=score, issue=issue, notes=_short(notes, 400)))
            else:
                failures.append(_failure(Stage.REFLECTION, branch, branch.item))
                audits.append(
                    QualityAudit(aspect=branch.item, score=0.0, issue=True, notes=str(branch.error), failed=True)
                )

        context.quality_overall = float(np.mean([a.score for a in audits]))
        context.quality_issue_count = sum(1 for a in audits if a.issue)

        narrative = (
            f"Reflection across {len(audits)} aspect(s): overall quality {context.quality_overall:.2f}, "
            f"{context.quality_issue_count} issue(s) flagged."
        )
        if failures:
            narrative += f" Audit failed for: {', '.join(f.item for f in failures)}."
        return StageResult(
            stage=Stage.REFLECTION,
            context=context,
            narrative=narrative,
            failures=failures,
            artifacts={"audits": audits},
        )

    # ------------------------------------------------------------------
    # Stage 9: final analysis
    # ------------------------------------------------------------------

    async def _final_analysis(self, graph: GraphStore, context: ResearchContext, user_input: Any) -> StageResult:
        digest = self._evidence_digest(graph, context)
        quality = "n/a" if context.quality_overall is None else f"{context.quality_overall:.2f}"

        async def synthesize(component: str) -> str:
            prompt = (
                f"{self._header(context)}\n\nKey evidence:\n{digest}\n\n"
                f"Report quality: {quality} with {context.quality_issue_count} issue(s).\n\n"
                f"Write the final analysis component: {component}."
            )
            return parsing.as_text(await self._reasoner.reason(prompt, ReasonMode.PLAIN))

        branches = await self._fan_out(FINAL_COMPONENTS, synthesize)

        parts: dict[str, str] = {}
        failures: list[BranchFailure] = []
        for branch in branches:
            if branch.ok:
                parts[branch.item] = branch.result.strip()
            else:
                failures.append(_failure(Stage.FINAL_ANALYSIS, branch, branch.item))
                parts[branch.item] = f"[Component unavailable: {branch.error}]"

        evidence = graph.nodes(NodeType.EVIDENCE)
        if evidence:
            confidence = [float(c) for c in np.mean([n.confidence for n in evidence], axis=0)]
        else:
            confidence = list(NEUTRAL_CONFIDENCE)

        final_text = "\n\n".join(f"### {name.title()}\n\n{text}" for name, text in parts.items())
        synthesis = GraphNode(
            id=SYNTHESIS_ID,
            label="Final synthesis",
            type=NodeType.SYNTHESIS,
            confidence=confidence,
            metadata=NodeMetadata(
                source_description="Final analysis",
                value=parts.get("summary", ""),
                notes=final_text,
                extra={"failed_components": [f.item for f in failures]},
            ),
        )
        edge = _edge(ROOT_ID, SYNTHESIS_ID, EdgeType.SUPPORTIVE, float(np.mean(confidence)))
        context.final_summary = final_text

        narrative = (
            f"Final analysis synthesized {len(parts) - len(failures)} of {len(parts)} component(s) "
            f"from {len(evidence)} retained evidence node(s)."
        )
        if failures:
            narrative += f" Unavailable: {', '.join(f.item for f in failures)}."
        return StageResult(
            stage=Stage.FINAL_ANALYSIS,
            delta=GraphDelta(nodes=[synthesis], edges=[edge]),
            context=context,
            narrative=narrative,
            failures=failures,
        )
