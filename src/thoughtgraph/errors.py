"""
Typed errors raised by the graph store, the stage engine and the
hypothesis competition engine.

Every error carries enough context (hypothesis id, stage index, criterion
name) for a caller to explain a failure without reading the logs.
"""

from __future__ import annotations


class ThoughtGraphError(Exception):
    """Base class for all thoughtgraph errors."""


class ValidationError(ThoughtGraphError):
    """Malformed hypothesis, criteria or evidence input. Never partially applied."""

    def __init__(self, violations: list[str], hypothesis_id: str | None = None) -> None:
        self.violations = list(violations)
        self.hypothesis_id = hypothesis_id
        subject = f"hypothesis {hypothesis_id}" if hypothesis_id else "input"
        super().__init__(f"Invalid {subject}: " + "; ".join(self.violations))


class DanglingEdgeError(ThoughtGraphError):
    """An edge references a node id that is not in the live node set."""

    def __init__(self, edge_id: str, missing: list[str]) -> None:
        self.edge_id = edge_id
        self.missing = list(missing)
        super().__init__(f"Edge {edge_id} references missing node(s): {', '.join(self.missing)}")


class MergeConflictError(ThoughtGraphError):
    """A merge cannot be applied to the requested target."""

    def __init__(self, target_id: str, reason: str = "target node does not exist") -> None:
        self.target_id = target_id
        self.reason = reason
        super().__init__(f"Cannot merge into {target_id}: {reason}")


class ReasonerError(ThoughtGraphError):
    """The external reasoner failed after exhausting its retries."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class StageOrderError(ThoughtGraphError):
    """A stage was requested before its prerequisite stage completed."""

    def __init__(self, stage_index: int, reason: str) -> None:
        self.stage_index = stage_index
        self.reason = reason
        super().__init__(f"Stage {stage_index} cannot run: {reason}")


class StageExecutionError(ThoughtGraphError):
    """A stage failed globally and committed nothing."""

    def __init__(self, stage_index: int, cause: BaseException) -> None:
        self.stage_index = stage_index
        self.cause = cause
        super().__init__(f"Stage {stage_index} failed: {cause}")


class UnknownHypothesisError(ThoughtGraphError):
    """A hypothesis id is not registered with the competition engine."""

    def __init__(self, hypothesis_id: str) -> None:
        self.hypothesis_id = hypothesis_id
        super().__init__(f"Unknown hypothesis: {hypothesis_id}")


class ConsensusNotSupportedError(ThoughtGraphError):
    """The requested consensus mechanism has no algorithm yet."""

    def __init__(self, mechanism: str) -> None:
        self.mechanism = mechanism
        super().__init__(f"Consensus mechanism '{mechanism}' is not yet supported")
