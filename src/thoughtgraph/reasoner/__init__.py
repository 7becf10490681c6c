"""
Reasoner module: the abstract collaborator the stages call for
natural-language reasoning and search, plus concrete backends.
"""

from thoughtgraph.reasoner.base import Reasoner, ReasonMode, ReasonOutput, StructuredResult
from thoughtgraph.reasoner.http import HttpReasoner
from thoughtgraph.reasoner.ollama import OllamaError, OllamaReasoner

__all__ = [
    "HttpReasoner",
    "OllamaError",
    "OllamaReasoner",
    "ReasonMode",
    "ReasonOutput",
    "Reasoner",
    "StructuredResult",
]
