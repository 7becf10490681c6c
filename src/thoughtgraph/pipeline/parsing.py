"""
Heuristics that turn reasoner output into numbers and records.

Confidence vectors are read from structured statistics when present and
otherwise estimated from methodological cues in the analysis text.
"""

from __future__ import annotations

import re
from typing import Any

from thoughtgraph.graph.schemas import CONFIDENCE_AXES
from thoughtgraph.reasoner.base import ReasonOutput, StructuredResult
from thoughtgraph.similarity import clip01

BASE_SCORE = 0.5

# Each axis is a list of cue groups. Within a group only the first
# matching rule applies; groups are additive.
_Rule = tuple[tuple[str, ...], float]

_CONFIDENCE_CUES: dict[str, list[list[_Rule]]] = {
    "empirical_support": [
        [
            (("meta-analysis",), 0.3),
            (("randomized controlled trial", "rct"), 0.25),
            (("cohort study",), 0.2),
            (("case study",), -0.2),
        ],
        [
            (("large sample", "n > 1000"), 0.15),
            (("small sample", "n < 30"), -0.15),
        ],
        [
            (("p < 0.001",), 0.15),
            (("p < 0.01",), 0.1),
            (("p < 0.05",), 0.05),
            (("not significant",), -0.2),
        ],
    ],
    "theoretical_basis": [
        [(("well-established theory", "theoretical framework"), 0.2)],
        [(("novel approach", "innovative"), 0.15)],
        [(("established principles",), 0.1)],
        [(("theoretical gap", "lacks theory"), -0.2)],
        [(("extensively cited", "foundational work"), 0.15)],
        [(("limited citations", "few references"), -0.1)],
    ],
    "methodological_rigor": [
        [(("rigorous methodology", "well-designed"), 0.2)],
        [(("controlled for confounders", "adjusted for"), 0.15)],
        [(("blinded", "double-blind"), 0.15)],
        [(("validated measures", "standardized"), 0.1)],
        [(("methodological limitations", "potential bias"), -0.15)],
        [(("selection bias", "confounding"), -0.1)],
        [(("poor methodology", "flawed design"), -0.25)],
    ],
    "consensus_alignment": [
        [(("scientific consensus", "widely accepted"), 0.25)],
        [(("expert agreement", "professional consensus"), 0.2)],
        [(("replicated findings", "consistent results"), 0.15)],
        [(("multiple studies confirm",), 0.1)],
        [(("controversial", "disputed"), -0.2)],
        [(("conflicting evidence", "mixed results"), -0.15)],
        [(("preliminary findings", "needs replication"), -0.1)],
    ],
}

IMPORTANCE_LEVELS = {"high": 0.9, "medium": 0.6, "low": 0.3}

DEFAULT_QUALITY = 0.7
_QUALITY_RE = re.compile(r"quality.*?(\d\.\d+)", re.IGNORECASE | re.DOTALL)
_ISSUE_RE = re.compile(r"\b(weakness|weaknesses|gap|gaps|issue|issues)\b", re.IGNORECASE)

_LIST_ITEM_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)]|hypothesis\s*\d*[:.)-])\s*(.+)$", re.IGNORECASE)


def as_text(output: ReasonOutput) -> str:
    """Textual view of any reasoner output."""
    if isinstance(output, StructuredResult):
        return output.raw or str(output.data)
    return output


def _axis_score(text: str, groups: list[list[_Rule]]) -> float:
    score = BASE_SCORE
    for group in groups:
        for cues, delta in group:
            if any(cue in text for cue in cues):
                score += delta
                break
    return clip01(score)


def confidence_from_text(text: str) -> list[float]:
    """Estimate a confidence vector from methodological cues in free text."""
    lowered = (text or "").lower()
    return [round(_axis_score(lowered, _CONFIDENCE_CUES[axis]), 4) for axis in CONFIDENCE_AXES]


def _as_unit(value: Any) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return clip01(number)


def confidence_from_structured(data: dict[str, Any]) -> list[float] | None:
    """
    Read a confidence vector from structured output.

    Accepts either a ``confidence`` list or one key per axis. Returns None
    when neither shape is present.
    """
    vector = data.get("confidence")
    if isinstance(vector, list) and len(vector) == len(CONFIDENCE_AXES):
        parsed = [_as_unit(v) for v in vector]
        if all(v is not None for v in parsed):
            return parsed  # type: ignore[return-value]

    by_axis = [_as_unit(data.get(axis)) for axis in CONFIDENCE_AXES]
    if all(v is not None for v in by_axis):
        return by_axis  # type: ignore[return-value]
    return None


def importance_from_output(output: ReasonOutput) -> tuple[float, str]:
    """
    Map a qualitative importance assessment to [0, 1].

    Structured output may carry ``importance`` as a level or a number; text
    is searched for the first of high, medium or low. Defaults to medium.
    """
    if isinstance(output, StructuredResult):
        raw = output.get("importance", output.get("score"))
        rationale = str(output.get("rationale", output.raw))
        number = _as_unit(raw)
        if number is not None:
            return number, rationale
        if isinstance(raw, str) and raw.strip().lower() in IMPORTANCE_LEVELS:
            return IMPORTANCE_LEVELS[raw.strip().lower()], rationale
        text = rationale
    else:
        text = output

    match = re.search(r"\b(high|medium|low)\b", text or "", re.IGNORECASE)
    level = match.group(1).lower() if match else "medium"
    return IMPORTANCE_LEVELS[level], text


def quality_from_output(output: ReasonOutput) -> tuple[float, bool, str]:
    """Quality score, issue flag and notes from a reflection audit."""
    if isinstance(output, StructuredResult):
        score = _as_unit(output.get("score", output.get("quality")))
        issue = output.get("issue")
        notes = str(output.get("notes", output.raw))
        if score is not None and isinstance(issue, bool):
            return score, issue, notes
        text = notes
    else:
        text = output

    match = _QUALITY_RE.search(text or "")
    score = clip01(float(match.group(1))) if match else DEFAULT_QUALITY
    issue = bool(_ISSUE_RE.search(text or ""))
    return score, issue, text


def hypotheses_from_output(output: ReasonOutput, limit: int = 3) -> list[dict[str, Any]]:
    """
    Extract up to ``limit`` hypothesis records from reasoner output.

    Each record has at least ``statement``; structured output may also
    provide ``falsification_criteria``, ``impact`` and trait estimates.
    """
    records: list[dict[str, Any]] = []
    if isinstance(output, StructuredResult):
        items = output.get("hypotheses", output.get("items", []))
        for item in items if isinstance(items, list) else []:
            if isinstance(item, str) and item.strip():
                records.append({"statement": item.strip()})
            elif isinstance(item, dict):
                statement = str(item.get("statement") or item.get("hypothesis") or "").strip()
                if statement:
                    records.append({**item, "statement": statement})
        if records:
            return records[:limit]
        text = output.raw
    else:
        text = output

    for line in (text or "").splitlines():
        match = _LIST_ITEM_RE.match(line)
        if match and len(match.group(1).strip()) >= 10:
            records.append({"statement": match.group(1).strip()})
    return records[:limit]


def unit_or(value: Any, default: float) -> float:
    parsed = _as_unit(value)
    return default if parsed is None else parsed
