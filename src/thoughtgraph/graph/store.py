"""
In-memory typed knowledge graph.

All mutations run against a working copy of the node and edge tables and
are swapped in only once every check has passed, so a rejected mutation
leaves the previous state untouched. Writers are serialized by a lock;
callers never hold it across an ``await``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from typing import Any

from pydantic import BaseModel, Field

from thoughtgraph.errors import DanglingEdgeError, MergeConflictError, ValidationError
from thoughtgraph.graph.schemas import (
    EdgeType,
    GraphEdge,
    GraphNode,
    GraphSnapshot,
    NodeMetadata,
    NodeType,
    mean_confidence,
)

logger = logging.getLogger(__name__)

# Node types pruning never removes.
PROTECTED_TYPES = frozenset({NodeType.ROOT, NodeType.KNOWLEDGE})


class MergeSpec(BaseModel):
    """A request to fold several nodes into one surviving node."""

    source_ids: list[str]
    target_id: str


class GraphDelta(BaseModel):
    """The complete set of graph changes produced by one stage."""

    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)
    prune_ids: list[str] = Field(default_factory=list)
    merges: list[MergeSpec] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.nodes or self.edges or self.prune_ids or self.merges)


class _Tables:
    """Mutable working copy of the store's tables."""

    def __init__(
        self,
        nodes: dict[str, GraphNode],
        edges: dict[str, GraphEdge],
        archive: dict[str, GraphNode],
    ) -> None:
        self.nodes = dict(nodes)
        self.edges = dict(edges)
        self.archive = dict(archive)


class GraphStore:
    """
    Typed research graph with integrity checks.

    Invariant: every live edge has both endpoints in the live node set.
    Nodes removed by pruning or merging move to an archive and stay
    readable through ``pruned_nodes()``.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, GraphNode] = {}
        self._edges: dict[str, GraphEdge] = {}
        self._archive: dict[str, GraphNode] = {}
        self._stage = 0
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def stage(self) -> int:
        """Index of the last stage that committed successfully."""
        return self._stage

    def nodes(self, node_type: NodeType | None = None) -> list[GraphNode]:
        """Live nodes in insertion order, optionally filtered by type."""
        return [n for n in self._nodes.values() if node_type is None or n.type == node_type]

    def edges(self) -> list[GraphEdge]:
        return list(self._edges.values())

    def pruned_nodes(self) -> list[GraphNode]:
        return list(self._archive.values())

    def get_node(self, node_id: str) -> GraphNode | None:
        return self._nodes.get(node_id)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def node_confidence(self) -> dict[str, float]:
        """Mean confidence per live node."""
        return {node_id: mean_confidence(node) for node_id, node in self._nodes.items()}

    def children(self, node_id: str, edge_type: EdgeType | None = None) -> list[GraphNode]:
        """Live nodes reached by an outgoing edge of ``node_id``."""
        return [
            self._nodes[e.target]
            for e in self._edges.values()
            if e.source == node_id and (edge_type is None or e.type == edge_type)
        ]

    def parents(self, node_id: str, edge_type: EdgeType | None = None) -> list[GraphNode]:
        return [
            self._nodes[e.source]
            for e in self._edges.values()
            if e.target == node_id and (edge_type is None or e.type == edge_type)
        ]

    def snapshot(self) -> GraphSnapshot:
        return GraphSnapshot(
            stage=self._stage,
            nodes=self.nodes(),
            edges=self.edges(),
            pruned=self.pruned_nodes(),
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_nodes(self, nodes: Iterable[GraphNode]) -> None:
        """Add nodes. Rejects the whole batch if any id is already taken."""
        self._apply(lambda t: self._add_nodes(t, list(nodes)))

    def add_edges(self, edges: Iterable[GraphEdge]) -> None:
        """
        Add edges.

        Raises:
            DanglingEdgeError: If any edge references a missing endpoint.
        """
        self._apply(lambda t: self._add_edges(t, list(edges)))

    def update_node(
        self,
        node_id: str,
        *,
        label: str | None = None,
        confidence: list[float] | None = None,
        metadata: NodeMetadata | None = None,
    ) -> GraphNode:
        """Replace selected fields of a live node and return the new node."""
        result: dict[str, GraphNode] = {}

        def mutate(tables: _Tables) -> None:
            current = tables.nodes.get(node_id)
            if current is None:
                raise ValidationError([f"node {node_id} does not exist"])
            update: dict[str, Any] = {}
            if label is not None:
                update["label"] = label
            if confidence is not None:
                update["confidence"] = confidence
            if metadata is not None:
                update["metadata"] = metadata
            # Round-trip through validation so bad confidence values are rejected.
            updated = GraphNode.model_validate({**current.model_dump(), **update})
            tables.nodes[node_id] = updated
            result["node"] = updated

        self._apply(mutate)
        return result["node"]

    def prune_nodes(self, predicate: Callable[[GraphNode], bool]) -> list[str]:
        """
        Remove every live node matching ``predicate`` together with all edges
        touching it, in one step. Root and knowledge nodes are never pruned.

        Returns:
            Ids of the pruned nodes, in insertion order.
        """
        pruned: list[str] = []

        def mutate(tables: _Tables) -> None:
            ids = [
                n.id for n in tables.nodes.values() if n.type not in PROTECTED_TYPES and predicate(n)
            ]
            self._prune(tables, ids)
            pruned.extend(ids)

        self._apply(mutate)
        return pruned

    def merge_nodes(self, source_ids: list[str], target_id: str) -> None:
        """
        Fold ``source_ids`` into ``target_id``.

        Edges of the sources are redirected to the target; self-loops and
        duplicate parallel edges created by the redirect are dropped.

        Raises:
            MergeConflictError: If the target is missing, is one of the
                sources, or a source is missing.
        """
        self._apply(lambda t: self._merge(t, MergeSpec(source_ids=source_ids, target_id=target_id)))

    def commit(self, delta: GraphDelta, stage: int | None = None) -> None:
        """
        Apply a stage's delta as one transaction: new nodes, new edges,
        prunes, then merges. Nothing is applied unless everything is valid.
        When ``stage`` is given the store records it as completed.
        """

        def mutate(tables: _Tables) -> None:
            self._add_nodes(tables, delta.nodes)
            self._add_edges(tables, delta.edges)
            prunable = [i for i in delta.prune_ids if i in tables.nodes]
            protected = [i for i in prunable if tables.nodes[i].type in PROTECTED_TYPES]
            if protected:
                raise ValidationError([f"node {i} is protected from pruning" for i in protected])
            self._prune(tables, prunable)
            for merge in delta.merges:
                self._merge(tables, merge)

        self._apply(mutate, stage=stage)
        logger.debug(
            f"Committed delta: {len(delta.nodes)} nodes, {len(delta.edges)} edges, "
            f"{len(delta.prune_ids)} pruned, {len(delta.merges)} merges"
        )

    def mark_stage(self, stage: int) -> None:
        """Record ``stage`` as completed without changing the graph."""
        with self._lock:
            self._stage = stage

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply(self, mutate: Callable[[_Tables], None], stage: int | None = None) -> None:
        with self._lock:
            tables = _Tables(self._nodes, self._edges, self._archive)
            mutate(tables)
            self._check_integrity(tables)
            self._nodes, self._edges, self._archive = tables.nodes, tables.edges, tables.archive
            if stage is not None:
                self._stage = stage

    @staticmethod
    def _add_nodes(tables: _Tables, nodes: list[GraphNode]) -> None:
        seen: set[str] = set()
        duplicates: list[str] = []
        for node in nodes:
            if node.id in tables.nodes or node.id in tables.archive or node.id in seen:
                duplicates.append(node.id)
            seen.add(node.id)
        if duplicates:
            raise ValidationError([f"node id {i} already exists" for i in duplicates])
        for node in nodes:
            tables.nodes[node.id] = node

    @staticmethod
    def _add_edges(tables: _Tables, edges: list[GraphEdge]) -> None:
        for edge in edges:
            missing = [i for i in (edge.source, edge.target) if i not in tables.nodes]
            if missing:
                raise DanglingEdgeError(edge.id, missing)
            if edge.id in tables.edges:
                raise ValidationError([f"edge id {edge.id} already exists"])
            tables.edges[edge.id] = edge

    @staticmethod
    def _prune(tables: _Tables, ids: list[str]) -> None:
        doomed = set(ids)
        if not doomed:
            return
        for node_id in ids:
            node = tables.nodes.pop(node_id)
            tables.archive[node_id] = node.model_copy(
                update={"metadata": node.metadata.model_copy(update={"pruned": True})}
            )
        tables.edges = {
            eid: e
            for eid, e in tables.edges.items()
            if e.source not in doomed and e.target not in doomed
        }

    @staticmethod
    def _merge(tables: _Tables, merge: MergeSpec) -> None:
        target = tables.nodes.get(merge.target_id)
        if target is None:
            raise MergeConflictError(merge.target_id)
        if merge.target_id in merge.source_ids:
            raise MergeConflictError(merge.target_id, "target is listed among the sources")
        missing = [i for i in merge.source_ids if i not in tables.nodes]
        if missing:
            raise MergeConflictError(merge.target_id, f"source node(s) missing: {', '.join(missing)}")

        sources = set(merge.source_ids)
        metadata = target.metadata
        for source_id in merge.source_ids:
            source = tables.nodes.pop(source_id)
            metadata = metadata.union(source.metadata)
            tables.archive[source_id] = source.model_copy(
                update={"metadata": source.metadata.model_copy(update={"merged_into": merge.target_id})}
            )
        metadata = metadata.model_copy(
            update={"merged_from": list(dict.fromkeys(metadata.merged_from + merge.source_ids))}
        )
        tables.nodes[merge.target_id] = target.model_copy(update={"metadata": metadata})

        seen: set[tuple[str, str, EdgeType]] = {
            (e.source, e.target, e.type)
            for e in tables.edges.values()
            if e.source not in sources and e.target not in sources
        }
        redirected: dict[str, GraphEdge] = {}
        for eid, edge in tables.edges.items():
            if edge.source not in sources and edge.target not in sources:
                redirected[eid] = edge
                continue
            src = merge.target_id if edge.source in sources else edge.source
            dst = merge.target_id if edge.target in sources else edge.target
            key = (src, dst, edge.type)
            if src == dst or key in seen:
                continue
            seen.add(key)
            redirected[eid] = edge.model_copy(update={"source": src, "target": dst})
        tables.edges = redirected

    @staticmethod
    def _check_integrity(tables: _Tables) -> None:
        for edge in tables.edges.values():
            missing = [i for i in (edge.source, edge.target) if i not in tables.nodes]
            if missing:
                raise DanglingEdgeError(edge.id, missing)
