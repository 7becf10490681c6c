"""
Graph module: the typed research graph, its confidence model and the
evidence-weight registry.
"""

from thoughtgraph.graph.evidence import EvidenceRegistry, EvidenceWeight
from thoughtgraph.graph.schemas import (
    CONFIDENCE_AXES,
    EdgeType,
    GraphEdge,
    GraphNode,
    GraphSnapshot,
    NodeMetadata,
    NodeType,
    mean_confidence,
)
from thoughtgraph.graph.store import GraphDelta, GraphStore, MergeSpec

__all__ = [
    "CONFIDENCE_AXES",
    "EdgeType",
    "EvidenceRegistry",
    "EvidenceWeight",
    "GraphDelta",
    "GraphEdge",
    "GraphNode",
    "GraphSnapshot",
    "GraphStore",
    "MergeSpec",
    "NodeMetadata",
    "NodeType",
    "mean_confidence",
]
