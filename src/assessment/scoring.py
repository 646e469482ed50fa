"""Scoring for submitted assessments.

Raw scoring only: it never decides pass/fail. A reviewer (or the configured
auto-pass policy) reads the percentage separately.
"""

import math
import random

from pydantic import BaseModel, Field

from src.core.schemas import Question, QuestionDetail, QuestionType


class ScoreResult(BaseModel):
    """Per-question detail plus totals."""

    details: list[QuestionDetail] = Field(default_factory=list)
    score: float = 0.0
    total_possible_points: float = 0.0
    percentage: int = 0


def normalize_text(value: str) -> str:
    """Lowercase and collapse whitespace for free-text comparison."""
    return " ".join(value.split()).lower()


def correct_options(question: Question) -> set[str]:
    """The set of option texts accepted for a multiple-choice question."""
    accepted = set(question.correct_answers)
    answer = question.correct_answer
    if isinstance(answer, int):
        if 0 <= answer < len(question.options):
            accepted.add(question.options[answer])
    elif isinstance(answer, str):
        accepted.add(answer)
    return accepted


def is_correct(question: Question, user_answer: str | None) -> bool:
    if user_answer is None:
        return False
    if question.type == QuestionType.MULTIPLE_CHOICE:
        return user_answer in correct_options(question)

    expected = list(question.correct_answers)
    if isinstance(question.correct_answer, str):
        expected.append(question.correct_answer)
    given = normalize_text(user_answer)
    return any(normalize_text(e) == given for e in expected)


def percentage_of(score: float, total: float) -> int:
    """round(100 * score / total), halves rounded up; 0 when there is nothing to score."""
    if total <= 0:
        return 0
    return int(math.floor(100 * score / total + 0.5))


def score_answers(
    questions: list[Question],
    answers: dict[str, str | None],
) -> ScoreResult:
    """Score answers keyed by question id. Unanswered questions count as wrong."""
    details: list[QuestionDetail] = []
    score = 0.0
    total = 0.0
    for q in questions:
        user_answer = answers.get(q.id)
        correct = is_correct(q, user_answer)
        total += q.points
        if correct:
            score += q.points
        details.append(
            QuestionDetail(
                id=q.id,
                question=q.text or "No question text",
                type=q.type,
                options=list(q.options),
                correct_answer=q.correct_answer,
                correct_answer_index=_correct_index(q),
                points=q.points,
                user_answer=user_answer,
                is_correct=correct,
            ),
        )
    return ScoreResult(
        details=details,
        score=score,
        total_possible_points=total,
        percentage=percentage_of(score, total),
    )


def shuffle_questions(
    questions: list[Question],
    rng: random.Random,
    shuffle_options: bool = True,
) -> list[Question]:
    """Return a shuffled copy; MCQ options are shuffled too with the answer remapped."""
    shuffled = list(questions)
    rng.shuffle(shuffled)
    if not shuffle_options:
        return shuffled

    result: list[Question] = []
    for q in shuffled:
        if q.type != QuestionType.MULTIPLE_CHOICE or not q.options:
            result.append(q)
            continue
        answer = q.correct_answer
        if isinstance(answer, int) and 0 <= answer < len(q.options):
            # Pin the answer to its text so it survives reordering.
            answer = q.options[answer]
        options = list(q.options)
        rng.shuffle(options)
        result.append(q.model_copy(update={"options": options, "correct_answer": answer}))
    return result


def _correct_index(question: Question) -> int | None:
    answer = question.correct_answer
    if isinstance(answer, int):
        return answer if 0 <= answer < len(question.options) else None
    if isinstance(answer, str) and answer in question.options:
        return question.options.index(answer)
    return None
