"""
Research run state management.

Tracks one run through the nine stages: the graph, the current research
context and every stage result so far.
"""

from datetime import datetime, timezone
from uuid import UUID, uuid4

from thoughtgraph.graph.store import GraphStore
from thoughtgraph.pipeline.schemas import BranchFailure, ResearchContext, Stage, StageResult


class PipelineState:
    """
    Manages the mutable state of a research run.

    The graph store is shared with the stage engine; the context is
    replaced by each stage's returned copy.
    """

    def __init__(self, question: str, graph: GraphStore | None = None) -> None:
        """
        Initialize run state.

        Args:
            question: The research question driving the run.
            graph: Store to build into (a fresh one if not provided).
        """
        self._run_id: UUID = uuid4()
        self._question = question
        self._graph = graph or GraphStore()
        self._context = ResearchContext(topic=question)
        self._results: list[StageResult] = []
        self._started_at: datetime = datetime.now(timezone.utc)
        self._completed_at: datetime | None = None

    @property
    def run_id(self) -> UUID:
        """Get the unique run identifier."""
        return self._run_id

    @property
    def question(self) -> str:
        return self._question

    @property
    def graph(self) -> GraphStore:
        return self._graph

    @property
    def context(self) -> ResearchContext:
        return self._context

    @property
    def results(self) -> list[StageResult]:
        """Get all stage results in order."""
        return self._results.copy()

    @property
    def narratives(self) -> list[str]:
        return [r.narrative for r in self._results]

    @property
    def failures(self) -> list[BranchFailure]:
        """Every branch failure recorded so far, across stages."""
        return [f for r in self._results for f in r.failures]

    @property
    def current_stage(self) -> int:
        """Index of the last completed stage (0 before initialization)."""
        return self._graph.stage

    @property
    def next_stage(self) -> Stage | None:
        if self.is_complete:
            return None
        return Stage(self.current_stage + 1)

    @property
    def is_complete(self) -> bool:
        return self.current_stage >= Stage.FINAL_ANALYSIS.value

    @property
    def started_at(self) -> datetime:
        return self._started_at

    @property
    def completed_at(self) -> datetime | None:
        return self._completed_at

    def record(self, result: StageResult) -> None:
        """Store a committed stage result and adopt its context."""
        self._results.append(result)
        self._context = result.context
        if result.stage == Stage.FINAL_ANALYSIS:
            self._completed_at = datetime.now(timezone.utc)
