import pytest

from thoughtgraph.pipeline import parsing
from thoughtgraph.reasoner.base import StructuredResult
from thoughtgraph.similarity import jaccard, text_similarity


def test_confidence_from_text_rewards_strong_designs() -> None:
    confidence = parsing.confidence_from_text("A Meta-analysis with a large sample reports p < 0.001.")
    assert confidence == [1.0, 0.5, 0.5, 0.5]


def test_confidence_from_text_penalizes_weak_signals() -> None:
    confidence = parsing.confidence_from_text(
        "Preliminary findings from a controversial study with poor methodology."
    )
    assert confidence[2] == pytest.approx(0.25)
    assert confidence[3] == pytest.approx(0.2)


def test_confidence_from_structured_accepts_vector_or_axes() -> None:
    assert parsing.confidence_from_structured({"confidence": [0.1, 0.2, 0.3, 1.4]}) == [0.1, 0.2, 0.3, 1.0]
    by_axis = {
        "empirical_support": 0.9,
        "theoretical_basis": "0.8",
        "methodological_rigor": 0.7,
        "consensus_alignment": 0.6,
    }
    assert parsing.confidence_from_structured(by_axis) == [0.9, 0.8, 0.7, 0.6]
    assert parsing.confidence_from_structured({"empirical_support": 0.9}) is None


@pytest.mark.parametrize(
    "output,expected",
    [
        (StructuredResult(data={"importance": "Medium"}), 0.6),
        (StructuredResult(data={"importance": 0.85}), 0.85),
        ("This cluster is of low relevance to the question.", 0.3),
        ("No rating given.", 0.6),
    ],
)
def test_importance_from_output(output, expected: float) -> None:
    importance, _ = parsing.importance_from_output(output)
    assert importance == pytest.approx(expected)


def test_quality_from_output() -> None:
    assert parsing.quality_from_output("Overall quality 0.65, with a gap in scope.")[:2] == (0.65, True)
    assert parsing.quality_from_output("Reads well.")[:2] == (0.7, False)
    structured = StructuredResult(data={"score": 0.4, "issue": False, "notes": "fine"})
    assert parsing.quality_from_output(structured) == (0.4, False, "fine")


def test_hypotheses_from_text_list() -> None:
    text = (
        "Candidates:\n"
        "1. Fibre increases butyrate producing taxa\n"
        "- short\n"
        "2) Diversity mediates the fibre effect on inflammation\n"
    )
    records = parsing.hypotheses_from_output(text)
    assert [r["statement"] for r in records] == [
        "Fibre increases butyrate producing taxa",
        "Diversity mediates the fibre effect on inflammation",
    ]


def test_hypotheses_are_capped() -> None:
    output = StructuredResult(data={"hypotheses": [f"Hypothesis number {i} is testable" for i in range(5)]})
    assert len(parsing.hypotheses_from_output(output)) == 3


def test_lexical_similarity() -> None:
    assert text_similarity("The gut microbiome", "gut microbiome") == 1.0
    assert text_similarity("fibre intake", "sleep quality") == 0.0
    assert jaccard([], []) == 0.0
