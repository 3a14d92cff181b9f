"""Quiz scoring and per-topic performance aggregation.

Everything here is pure: a list of questions and a mapping of submitted
answers go in, a :class:`QuizResults` comes out. Persistence and HTTP concerns
live in :mod:`certquiz.services` and :mod:`certquiz.main`.

Answers are accepted in tagged form (:class:`ByIndex`, :class:`ByText`,
:class:`ByIndices`, :class:`ByTexts`) and resolved against the question's
options to a set of option indices before comparison. A question is answered
correctly when that set equals the set of correct option indices exactly, so
single-answer questions are simply the one-element case.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Hashable, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from certquiz.errors import InvalidInput

IMPROVEMENT_THRESHOLD = 70.0
STRENGTH_THRESHOLD = 80.0
DEFAULT_PASS_PERCENTAGE = 80.0


@dataclass(frozen=True)
class OptionSpec:
    text: str
    is_correct: bool


@dataclass(frozen=True)
class QuestionSpec:
    id: Hashable
    topic: str
    options: Tuple[OptionSpec, ...]

    @property
    def correct_indices(self) -> FrozenSet[int]:
        return frozenset(i for i, option in enumerate(self.options) if option.is_correct)

    @property
    def is_multi_answer(self) -> bool:
        return len(self.correct_indices) > 1


@dataclass(frozen=True)
class ByIndex:
    index: int


@dataclass(frozen=True)
class ByText:
    text: str


@dataclass(frozen=True)
class ByIndices:
    indices: Tuple[int, ...]


@dataclass(frozen=True)
class ByTexts:
    texts: Tuple[str, ...]


Answer = Union[ByIndex, ByText, ByIndices, ByTexts]


def parse_answer(raw) -> Optional[Answer]:
    """Turn a raw client value into a tagged answer.

    ``None`` means "not answered". Integers select by option index, strings by
    option text, and lists of either select several options at once.
    """
    if raw is None:
        return None
    if isinstance(raw, (ByIndex, ByText, ByIndices, ByTexts)):
        return raw
    if isinstance(raw, bool):
        raise InvalidInput("Answer must be an option index or option text, not a boolean")
    if isinstance(raw, int):
        return ByIndex(raw)
    if isinstance(raw, str):
        return ByText(raw)
    if isinstance(raw, (list, tuple, set, frozenset)):
        values = sorted(raw) if isinstance(raw, (set, frozenset)) else list(raw)
        if any(isinstance(v, bool) for v in values):
            raise InvalidInput("Answer must be an option index or option text, not a boolean")
        if all(isinstance(v, int) for v in values):
            return ByIndices(tuple(values))
        if all(isinstance(v, str) for v in values):
            return ByTexts(tuple(values))
        raise InvalidInput("Multi-option answers must be all indices or all option texts")
    raise InvalidInput(f"Unsupported answer type: {type(raw).__name__}")


def resolve_answer(question: QuestionSpec, answer: Optional[Answer]) -> Optional[FrozenSet[int]]:
    """Resolve an answer to the set of option indices it selects.

    Indices outside the option range and texts that match no option are
    dropped, which makes the answer wrong rather than raising.
    """
    if answer is None:
        return None

    option_count = len(question.options)
    if isinstance(answer, ByIndex):
        indices: Iterable[int] = [answer.index]
    elif isinstance(answer, ByIndices):
        indices = answer.indices
    else:
        texts = [answer.text] if isinstance(answer, ByText) else list(answer.texts)
        wanted = {t.strip() for t in texts}
        indices = [i for i, option in enumerate(question.options) if option.text.strip() in wanted]
        if len(indices) < len(wanted):
            # Some text matched nothing; keep an out-of-range marker so the
            # selection cannot equal the correct set.
            indices = [*indices, -1]

    selected = set()
    for idx in indices:
        if 0 <= idx < option_count:
            selected.add(idx)
        else:
            selected.add(-1)
    return frozenset(selected)


@dataclass(frozen=True)
class QuestionOutcome:
    question_id: Hashable
    topic: str
    selected: Optional[FrozenSet[int]]
    is_correct: bool


@dataclass(frozen=True)
class TopicScore:
    correct: int
    total: int
    percentage: float


@dataclass(frozen=True)
class OverallScore:
    correct: int
    total: int
    percentage: float


@dataclass(frozen=True)
class QuizResults:
    score: OverallScore
    passed: bool
    pass_percentage: float
    topic_performance: Dict[str, TopicScore]
    improvement_areas: List[str]
    strengths: List[str]
    outcomes: Tuple[QuestionOutcome, ...] = field(default_factory=tuple)


def percentage_to_score(percentage: float) -> int:
    # Half-up, so 72.5 stores as 73.
    return int(math.floor(percentage + 0.5))


def _check_pass_percentage(pass_percentage: float) -> float:
    if pass_percentage is None or not 0 <= pass_percentage <= 100:
        raise InvalidInput(f"Pass percentage must be between 0 and 100, got {pass_percentage!r}")
    return float(pass_percentage)


def aggregate(
    pairs: Iterable[Tuple[str, bool]],
    *,
    pass_percentage: float = DEFAULT_PASS_PERCENTAGE,
    outcomes: Sequence[QuestionOutcome] = (),
) -> QuizResults:
    """Aggregate ``(topic, is_correct)`` pairs into quiz results."""
    pass_percentage = _check_pass_percentage(pass_percentage)
    tallies: Dict[str, Dict[str, int]] = {}
    total_correct = 0
    total_questions = 0

    for topic, is_correct in pairs:
        stats = tallies.setdefault(topic, {"correct": 0, "total": 0})
        stats["total"] += 1
        total_questions += 1
        if is_correct:
            stats["correct"] += 1
            total_correct += 1

    if not total_questions:
        raise InvalidInput("Cannot score a quiz with no questions")

    topic_performance = {
        topic: TopicScore(
            correct=stats["correct"],
            total=stats["total"],
            percentage=100.0 * stats["correct"] / stats["total"],
        )
        for topic, stats in tallies.items()
        if stats["total"]
    }
    improvement_areas = [t for t, ts in topic_performance.items() if ts.percentage < IMPROVEMENT_THRESHOLD]
    strengths = [t for t, ts in topic_performance.items() if ts.percentage >= STRENGTH_THRESHOLD]

    percentage = 100.0 * total_correct / total_questions
    return QuizResults(
        score=OverallScore(correct=total_correct, total=total_questions, percentage=percentage),
        passed=percentage >= pass_percentage,
        pass_percentage=pass_percentage,
        topic_performance=topic_performance,
        improvement_areas=improvement_areas,
        strengths=strengths,
        outcomes=tuple(outcomes),
    )


class ScoringEngine:
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def evaluate(self, questions: Sequence[QuestionSpec], answers: Mapping[Hashable, object]) -> List[QuestionOutcome]:
        if not questions:
            raise InvalidInput("Cannot score a quiz with no questions")

        seen = set()
        outcomes = []
        for question in questions:
            if question.id in seen:
                raise InvalidInput(f"Question {question.id!r} appears more than once")
            seen.add(question.id)

            correct = question.correct_indices
            if not correct:
                raise InvalidInput(f"Question {question.id!r} has no correct option")

            selected = resolve_answer(question, parse_answer(answers.get(question.id)))
            outcomes.append(
                QuestionOutcome(
                    question_id=question.id,
                    topic=question.topic,
                    selected=selected,
                    is_correct=selected is not None and selected == correct,
                )
            )
        return outcomes

    def score(
        self,
        questions: Sequence[QuestionSpec],
        answers: Mapping[Hashable, object],
        pass_percentage: float = DEFAULT_PASS_PERCENTAGE,
    ) -> QuizResults:
        outcomes = self.evaluate(questions, answers)
        results = aggregate(
            ((o.topic, o.is_correct) for o in outcomes),
            pass_percentage=pass_percentage,
            outcomes=outcomes,
        )
        self.logger.debug(
            "Scored %s questions: correct=%s percentage=%.2f passed=%s improvement=%s strengths=%s",
            results.score.total,
            results.score.correct,
            results.score.percentage,
            results.passed,
            len(results.improvement_areas),
            len(results.strengths),
        )
        return results


def score(
    questions: Sequence[QuestionSpec],
    answers: Mapping[Hashable, object],
    pass_percentage: float = DEFAULT_PASS_PERCENTAGE,
) -> QuizResults:
    return ScoringEngine().score(questions, answers, pass_percentage=pass_percentage)
