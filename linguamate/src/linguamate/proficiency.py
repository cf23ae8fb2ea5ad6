"""
Proficiency Levels and Scoring

Static reference data for the three proficiency levels and the rule-based
scoring that maps model-assigned vocabulary/grammar scores to a level.

Algorithm:
- overall = vocab * 0.4 + grammar * 0.6 (grammar weighted slightly more),
  rounded half-up to one decimal
- overall <= 2 -> beginner, <= 4 -> intermediate, otherwise advanced
"""

import math
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List

from linguamate.structured_reply import ReplyParseError, extract_json_object


@dataclass(frozen=True)
class ProficiencyLevel:
    """Immutable per-level constraints."""
    level: str
    vocab_limit: int
    grammar_complexity: str
    persona: str
    score: int


PROFICIENCY_LEVELS: Dict[str, ProficiencyLevel] = {
    "beginner": ProficiencyLevel("beginner", 500, "basic", "elementary student", 1),
    "intermediate": ProficiencyLevel("intermediate", 2000, "moderate", "high school student", 3),
    "advanced": ProficiencyLevel("advanced", 5000, "complex", "young professional", 5),
}

VOCAB_WEIGHT = 0.4
GRAMMAR_WEIGHT = 0.6
BEGINNER_MAX_SCORE = 2
INTERMEDIATE_MAX_SCORE = 4
MIN_SCORE = 1
MAX_SCORE = 5


class EvaluationError(ValueError):
    """Scoring payload from the model is malformed or incomplete."""


@dataclass
class EvaluationResult:
    """Result of one proficiency evaluation."""
    vocab_score: float
    grammar_score: float
    overall_score: float
    level: ProficiencyLevel
    errors: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    def to_metadata(self) -> Dict[str, Any]:
        """Build the evaluationResult/constraints metadata blocks."""
        return {
            "evaluationResult": {
                "level": self.level.level,
                "score": self.overall_score,
                "vocabScore": self.vocab_score,
                "grammarScore": self.grammar_score,
                "errors": list(self.errors),
                "suggestions": list(self.suggestions),
            },
            "constraints": {
                "vocabLimit": self.level.vocab_limit,
                "grammarComplexity": self.level.grammar_complexity,
                "persona": self.level.persona,
            },
        }


def calculate_overall_score(vocab_score: float, grammar_score: float) -> float:
    """Weighted score rounded half-up to one decimal place."""
    weighted = Decimal(str(vocab_score * VOCAB_WEIGHT + grammar_score * GRAMMAR_WEIGHT))
    return float(weighted.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def determine_level(score: float) -> ProficiencyLevel:
    if score <= BEGINNER_MAX_SCORE:
        return PROFICIENCY_LEVELS["beginner"]
    if score <= INTERMEDIATE_MAX_SCORE:
        return PROFICIENCY_LEVELS["intermediate"]
    return PROFICIENCY_LEVELS["advanced"]


def get_level(name: str) -> ProficiencyLevel:
    """Look up a level by name, defaulting to beginner."""
    return PROFICIENCY_LEVELS.get(name, PROFICIENCY_LEVELS["beginner"])


def _score(data: Dict[str, Any], key: str) -> float:
    try:
        value = float(data.get(key))
    except (TypeError, ValueError, OverflowError):
        raise EvaluationError(f"Missing or non-numeric {key}")
    if not math.isfinite(value):
        raise EvaluationError(f"Non-finite {key}: {value}")
    return min(max(value, MIN_SCORE), MAX_SCORE)


def _descriptions(items: Any, key: str) -> List[str]:
    if not isinstance(items, list):
        return []
    descriptions = []
    for item in items:
        if isinstance(item, dict):
            text = item.get(key)
            if text:
                descriptions.append(str(text))
        elif item:
            descriptions.append(str(item))
    return descriptions


def parse_evaluation(raw: str) -> EvaluationResult:
    """
    Parse the model's scoring payload into an EvaluationResult.

    Args:
        raw: Model output expected to hold {vocabScore, grammarScore, errors[], suggestions[]}

    Returns:
        EvaluationResult

    Raises:
        EvaluationError: if the payload is not JSON or the scores are missing
    """
    try:
        data = extract_json_object(raw)
    except ReplyParseError as e:
        raise EvaluationError(str(e)) from e

    vocab_score = _score(data, "vocabScore")
    grammar_score = _score(data, "grammarScore")
    overall_score = calculate_overall_score(vocab_score, grammar_score)

    return EvaluationResult(
        vocab_score=vocab_score,
        grammar_score=grammar_score,
        overall_score=overall_score,
        level=determine_level(overall_score),
        errors=_descriptions(data.get("errors"), "error"),
        suggestions=_descriptions(data.get("suggestions"), "suggestion"),
    )
