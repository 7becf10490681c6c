"""Consensus mechanisms over a set of competing hypotheses.

Only Bayesian updating has an algorithm. Delphi rounds, prediction
markets and structured peer review are registered as extension points
and raise ``ConsensusNotSupportedError`` until they are designed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import numpy as np

from thoughtgraph.competition.schemas import (
    ConsensusMechanism,
    ConsensusMechanismType,
    ConsensusResult,
    Hypothesis,
)
from thoughtgraph.errors import ConsensusNotSupportedError

logger = logging.getLogger(__name__)

# Fixed estimate reported for every Bayesian run.
BAYESIAN_CONSENSUS_STRENGTH = 0.7

ConsensusFn = Callable[[list[Hypothesis], dict[str, float], ConsensusMechanism], ConsensusResult]


def bayesian_updating(
    hypotheses: list[Hypothesis],
    likelihoods: dict[str, float],
    mechanism: ConsensusMechanism,
) -> ConsensusResult:
    """
    Iteratively update a belief distribution over the hypotheses.

    The prior is each hypothesis's confidence; the likelihood is its
    overall evaluation score. The normalized posterior becomes the next
    prior until the largest per-hypothesis change drops below the
    convergence threshold or ``max_iterations`` is reached.
    """
    ids = [h.id for h in hypotheses]
    if not ids:
        return ConsensusResult(
            mechanism=mechanism.type,
            hypothesis_ids=[],
            final_scores={},
            iterations=0,
            converged=True,
            consensus_strength=BAYESIAN_CONSENSUS_STRENGTH,
            leading_hypothesis=None,
        )

    belief = np.array([max(0.0, h.confidence) for h in hypotheses], dtype=float)
    belief = _normalize(belief)
    likelihood = np.array([max(0.0, likelihoods.get(i, 0.0)) for i in ids], dtype=float)

    iterations = 0
    converged = False
    while iterations < mechanism.max_iterations:
        iterations += 1
        posterior = _normalize(belief * likelihood)
        change = float(np.max(np.abs(posterior - belief)))
        belief = posterior
        if change < mechanism.convergence_threshold:
            converged = True
            break

    logger.debug(f"Bayesian consensus over {len(ids)} hypotheses: {iterations} iteration(s), converged={converged}")
    return ConsensusResult(
        mechanism=mechanism.type,
        hypothesis_ids=ids,
        final_scores={i: float(b) for i, b in zip(ids, belief)},
        iterations=iterations,
        converged=converged,
        consensus_strength=BAYESIAN_CONSENSUS_STRENGTH,
        leading_hypothesis=ids[int(np.argmax(belief))],
    )


def _normalize(values: np.ndarray) -> np.ndarray:
    total = values.sum()
    if total <= 0:
        return np.full(len(values), 1.0 / len(values))
    return values / total


def _not_supported(mechanism_type: ConsensusMechanismType) -> ConsensusFn:
    def run(
        hypotheses: list[Hypothesis],
        likelihoods: dict[str, float],
        mechanism: ConsensusMechanism,
    ) -> ConsensusResult:
        raise ConsensusNotSupportedError(mechanism_type.value)

    return run


MECHANISMS: dict[ConsensusMechanismType, ConsensusFn] = {
    ConsensusMechanismType.BAYESIAN_UPDATING: bayesian_updating,
    ConsensusMechanismType.DELPHI_METHOD: _not_supported(ConsensusMechanismType.DELPHI_METHOD),
    ConsensusMechanismType.PREDICTION_MARKETS: _not_supported(ConsensusMechanismType.PREDICTION_MARKETS),
    ConsensusMechanismType.PEER_REVIEW: _not_supported(ConsensusMechanismType.PEER_REVIEW),
}


def build_consensus(
    hypotheses: list[Hypothesis],
    likelihoods: dict[str, float],
    mechanism: ConsensusMechanism,
) -> ConsensusResult:
    """Dispatch to the algorithm registered for ``mechanism.type``."""
    return MECHANISMS[mechanism.type](hypotheses, likelihoods, mechanism)
