"""Lightweight lexical similarity helpers."""

from __future__ import annotations

import re
from collections.abc import Iterable

_STOP = {
    "a", "an", "the", "and", "or", "but", "if", "then", "thus", "therefore", "so", "of", "to",
    "in", "on", "for", "with", "by", "as", "at", "from", "is", "are", "was", "were", "be", "been",
    "this", "that", "these", "those", "it", "its", "we", "our", "you", "your", "they", "their",
    "may", "might", "can", "could", "will", "would",
}

_TOK = re.compile(r"[A-Za-z0-9]+")


def tokenize(text: str) -> set[str]:
    return {t.lower() for t in _TOK.findall(text or "") if t.lower() not in _STOP}


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    a, b = set(a), set(b)
    if not a and not b:
        return 0.0
    union = len(a | b)
    return len(a & b) / union if union else 0.0


def text_similarity(a: str, b: str) -> float:
    """Token Jaccard similarity of two texts."""
    return jaccard(tokenize(a), tokenize(b))


def clip01(x: float) -> float:
    return 0.0 if x < 0.0 else 1.0 if x > 1.0 else x
