"""Shared fixtures: a scripted reasoner and helpers for building graphs."""

from __future__ import annotations

import re

import pytest

from thoughtgraph.config import Settings
from thoughtgraph.errors import ReasonerError
from thoughtgraph.reasoner.base import Reasoner, ReasonMode, ReasonOutput, StructuredResult

QUESTION = "Does dietary fibre intake influence gut microbiome diversity in adults?"


class ScriptedReasoner(Reasoner):
    """
    Deterministic in-memory reasoner.

    Answers each prompt family with a fixed payload. Any prompt containing
    one of ``fail_on`` raises ``ReasonerError``; any evidence assessment
    containing one of ``weak_evidence`` gets low confidence.
    """

    def __init__(
        self,
        fail_on: tuple[str, ...] = (),
        weak_evidence: tuple[str, ...] = (),
        importance: str = "high",
    ) -> None:
        self.fail_on = fail_on
        self.weak_evidence = weak_evidence
        self.importance = importance
        self.calls: list[tuple[ReasonMode, str]] = []
        self.closed = False

    async def reason(self, prompt: str, mode: ReasonMode = ReasonMode.PLAIN) -> ReasonOutput:
        self.calls.append((mode, prompt))
        if any(marker in prompt for marker in self.fail_on):
            raise ReasonerError("scripted failure")

        if mode == ReasonMode.STRUCTURED:
            return StructuredResult(data=self._structured(prompt), raw="{}")
        if mode == ReasonMode.SEARCH:
            return "A meta-analysis of 40 cohort studies with a large sample reports p < 0.001."
        if "Audit the report" in prompt:
            return "quality: 0.80. The argument is sound and well organized."
        return "Scripted analysis text for this request."

    def _structured(self, prompt: str) -> dict:
        if "Frame the following research question" in prompt:
            return {
                "field": "Microbiology",
                "objectives": ["Quantify the fibre effect", "Identify mediating taxa"],
                "constraints": ["Observational data only"],
                "summary": "Examines diet and microbiome diversity.",
            }
        if "Propose 2 to 3 testable hypotheses" in prompt:
            dimension = re.search(r"Dimension: (.+)", prompt).group(1).strip()
            return {
                "hypotheses": [
                    {
                        "statement": f"Variation in {dimension} explains observed differences in microbiome diversity",
                        "falsification_criteria": "No association after adjustment",
                        "explanatory_power": 0.8,
                        "falsifiability": 0.7,
                        "scope": "regional",
                    },
                    {
                        "statement": f"Interventions aimed at {dimension} shift long term health outcomes measurably",
                        "explanatory_power": 0.5,
                        "falsifiability": 0.4,
                    },
                ]
            }
        if "Assess this evidence" in prompt:
            level = 0.2 if any(marker in prompt for marker in self.weak_evidence) else 0.8
            return {
                "empirical_support": level,
                "theoretical_basis": level,
                "methodological_rigor": level,
                "consensus_alignment": level,
                "statistical_power": 0.7,
                "reliability": level,
                "direction": "supports",
            }
        if "Rate the importance" in prompt:
            return {"importance": self.importance, "rationale": "Central to the question."}
        return {"answer": "ok"}

    async def close(self) -> None:
        self.closed = True


class DuplicatingReasoner(ScriptedReasoner):
    """Proposes the same hypothesis twice for every dimension."""

    def _structured(self, prompt: str) -> dict:
        data = super()._structured(prompt)
        if "hypotheses" in data:
            first = data["hypotheses"][0]
            data["hypotheses"] = [first, dict(first)]
        return data


@pytest.fixture
def settings() -> Settings:
    return Settings(
        max_concurrent_calls=4,
        decomposition_dimensions=["Scope", "Constraints", "Potential Biases"],
        knowledge_nodes=["Fibre is fermented by colonic bacteria"],
    )


@pytest.fixture
def reasoner() -> ScriptedReasoner:
    return ScriptedReasoner()
