"""
thoughtgraph: a graph-of-thoughts research reasoning engine.

Builds a typed knowledge graph through nine ordered stages and arbitrates
between competing hypotheses with weighted, evidence-backed scoring.
"""

__version__ = "0.1.0"
