"""Hypothesis landscape analysis.

Read-only view over the registered hypotheses: which ones cluster
together, which pairs conflict, and which domains lack coverage.
"""

from __future__ import annotations

from collections import defaultdict
from enum import Enum
from itertools import combinations

import numpy as np
from pydantic import BaseModel, Field

from thoughtgraph.competition.schemas import Hypothesis
from thoughtgraph.similarity import jaccard, text_similarity

DOMAIN_CLUSTER_SIMILARITY = 0.5


class ConflictType(str, Enum):
    CONTRADICTORY = "contradictory"
    COMPETING = "competing"
    ORTHOGONAL = "orthogonal"


class GapKind(str, Enum):
    UNCOVERED = "uncovered"
    SINGLE_HYPOTHESIS = "single_hypothesis"
    UNSUPPORTED = "unsupported"


class HypothesisCluster(BaseModel):
    id: str
    hypothesis_ids: list[str]
    common_themes: list[str] = Field(default_factory=list)
    average_confidence: float = 0.0
    evidence_overlap: float = 0.0


class HypothesisConflict(BaseModel):
    hypothesis_a: str
    hypothesis_b: str
    type: ConflictType
    intensity: float = Field(..., ge=0.0, le=1.0)
    description: str
    resolution_strategy: str


class KnowledgeGap(BaseModel):
    domain: str
    kind: GapKind
    description: str
    priority: float = Field(..., ge=0.0, le=1.0)


class LandscapeAnalysis(BaseModel):
    clusters: list[HypothesisCluster] = Field(default_factory=list)
    conflicts: list[HypothesisConflict] = Field(default_factory=list)
    gaps: list[KnowledgeGap] = Field(default_factory=list)

    def summary(self) -> str:
        """One-paragraph description for stage narratives."""
        by_type = defaultdict(int)
        for conflict in self.conflicts:
            by_type[conflict.type.value] += 1
        conflict_text = ", ".join(f"{n} {t}" for t, n in sorted(by_type.items())) or "none"
        gap_domains = ", ".join(g.domain for g in self.gaps[:5]) or "none"
        return (
            f"{len(self.clusters)} hypothesis cluster(s); conflicts: {conflict_text}; "
            f"coverage gaps in: {gap_domains}."
        )


def _evidence(h: Hypothesis) -> set[str]:
    return set(h.supporting_evidence) | set(h.contradicting_evidence)


class LandscapeAnalyzer:
    """Derive clusters, conflicts and gaps from a hypothesis set."""

    def __init__(self, domain_similarity: float = DOMAIN_CLUSTER_SIMILARITY) -> None:
        self._domain_similarity = domain_similarity

    def analyze(
        self,
        hypotheses: list[Hypothesis],
        expected_domains: list[str] | None = None,
    ) -> LandscapeAnalysis:
        return LandscapeAnalysis(
            clusters=self.clusters(hypotheses),
            conflicts=self.conflicts(hypotheses),
            gaps=self.gaps(hypotheses, expected_domains or []),
        )

    def clusters(self, hypotheses: list[Hypothesis]) -> list[HypothesisCluster]:
        """Connected components under domain similarity or shared evidence."""
        parent = {h.id: h.id for h in hypotheses}

        def find(x: str) -> str:
            while parent[x] != x:
                parent[x] = parent[parent[x]]
                x = parent[x]
            return x

        for a, b in combinations(hypotheses, 2):
            similar = jaccard(a.domain, b.domain) >= self._domain_similarity
            if similar or _evidence(a) & _evidence(b):
                root_a, root_b = find(a.id), find(b.id)
                if root_a != root_b:
                    parent[root_b] = root_a

        groups: dict[str, list[Hypothesis]] = defaultdict(list)
        for h in hypotheses:
            groups[find(h.id)].append(h)

        clusters: list[HypothesisCluster] = []
        for index, members in enumerate(groups.values(), start=1):
            themes = set(members[0].domain)
            for member in members[1:]:
                themes &= set(member.domain)
            evidence_sets = [_evidence(m) for m in members]
            union = set().union(*evidence_sets)
            shared = set.intersection(*evidence_sets) if evidence_sets else set()
            clusters.append(
                HypothesisCluster(
                    id=f"cluster-{index}",
                    hypothesis_ids=[m.id for m in members],
                    common_themes=sorted(themes),
                    average_confidence=float(np.mean([m.confidence for m in members])),
                    evidence_overlap=len(shared) / len(union) if union else 0.0,
                )
            )
        return clusters

    def conflicts(self, hypotheses: list[Hypothesis]) -> list[HypothesisConflict]:
        """Pairwise conflicts between hypotheses that share a domain tag."""
        found: list[HypothesisConflict] = []
        for a, b in combinations(hypotheses, 2):
            if not set(a.domain) & set(b.domain):
                continue

            crossed = (set(a.supporting_evidence) & set(b.contradicting_evidence)) | (
                set(b.supporting_evidence) & set(a.contradicting_evidence)
            )
            shared_evidence = _evidence(a) & _evidence(b)
            shared_nodes = set(a.related_nodes) & set(b.related_nodes)

            if crossed:
                found.append(
                    HypothesisConflict(
                        hypothesis_a=a.id,
                        hypothesis_b=b.id,
                        type=ConflictType.CONTRADICTORY,
                        intensity=min(1.0, 0.5 + 0.25 * len(crossed)),
                        description=(
                            f"{a.id} and {b.id} read {len(crossed)} piece(s) of evidence in opposite directions"
                        ),
                        resolution_strategy=f"Design a critical test that discriminates between {a.id} and {b.id}",
                    )
                )
            elif shared_evidence or shared_nodes:
                overlap = jaccard(_evidence(a), _evidence(b))
                claim_overlap = text_similarity(a.description, b.description)
                found.append(
                    HypothesisConflict(
                        hypothesis_a=a.id,
                        hypothesis_b=b.id,
                        type=ConflictType.COMPETING,
                        intensity=max(overlap, claim_overlap, 0.3),
                        description=f"{a.id} and {b.id} offer rival explanations of the same material",
                        resolution_strategy="Run a competition round weighted towards empirical support",
                    )
                )
            else:
                found.append(
                    HypothesisConflict(
                        hypothesis_a=a.id,
                        hypothesis_b=b.id,
                        type=ConflictType.ORTHOGONAL,
                        intensity=0.1,
                        description=f"{a.id} and {b.id} address the same domain from unrelated angles",
                        resolution_strategy="Explore whether the explanations can be integrated",
                    )
                )
        return found

    def gaps(self, hypotheses: list[Hypothesis], expected_domains: list[str]) -> list[KnowledgeGap]:
        """Domains with no hypotheses, only one hypothesis, or no evidence at all."""
        by_domain: dict[str, list[Hypothesis]] = defaultdict(list)
        for h in hypotheses:
            for tag in h.domain:
                by_domain[tag].append(h)

        gaps: list[KnowledgeGap] = []
        for domain in expected_domains:
            if domain not in by_domain:
                gaps.append(
                    KnowledgeGap(
                        domain=domain,
                        kind=GapKind.UNCOVERED,
                        description=f"No hypotheses address {domain}",
                        priority=1.0,
                    )
                )

        for domain, members in by_domain.items():
            if not any(_evidence(m) for m in members):
                gaps.append(
                    KnowledgeGap(
                        domain=domain,
                        kind=GapKind.UNSUPPORTED,
                        description=f"No evidence has been attached to hypotheses in {domain}",
                        priority=0.8,
                    )
                )
            if len(members) == 1:
                gaps.append(
                    KnowledgeGap(
                        domain=domain,
                        kind=GapKind.SINGLE_HYPOTHESIS,
                        description=f"Only {members[0].id} addresses {domain}; alternatives are missing",
                        priority=0.5,
                    )
                )

        return sorted(gaps, key=lambda g: -g.priority)
