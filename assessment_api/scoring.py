"""Submission scoring.

Works on anything shaped like the ORM models (``id``, ``type`` and ``options``
on a question; ``id`` and ``score`` on an option), so it runs the same against
loaded rows and against plain objects in tests.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from assessment_api.models import QuestionType

MULTI_SEPARATOR = ","


@dataclass
class ScoredResponse:
    question_id: str
    selected_option: Optional[str]
    score: float


@dataclass
class ScoredSubmission:
    total_score: float = 0
    per_question: List[ScoredResponse] = field(default_factory=list)


def _unique(values: Iterable[str]) -> List[str]:
    seen = set()
    ordered = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered


def score_question(question, selected: Sequence[str]) -> ScoredResponse:
    """Score one question given the submitted option ids (or text for TEXT questions)."""
    selected = [value for value in (selected or []) if value is not None]
    question_type = QuestionType(question.type)

    if question_type is QuestionType.TEXT:
        return ScoredResponse(question.id, selected[0] if selected else None, 0)

    scores = {option.id: option.score for option in question.options}

    if question_type is QuestionType.SINGLE_CHOICE:
        if not selected:
            return ScoredResponse(question.id, None, 0)
        chosen = selected[0]
        if chosen not in scores:
            return ScoredResponse(question.id, None, 0)
        return ScoredResponse(question.id, chosen, scores[chosen])

    # Repeated ids count once
    chosen = _unique(selected)
    total = sum(scores.get(option_id, 0) for option_id in chosen)
    return ScoredResponse(question.id, MULTI_SEPARATOR.join(chosen), total)


def find_invalid_question_ids(questions, question_ids: Iterable[str]) -> List[str]:
    known = {question.id for question in questions}
    return _unique(qid for qid in question_ids if qid not in known)


def find_duplicate_question_ids(question_ids: Iterable[str]) -> List[str]:
    seen = set()
    duplicates = []
    for qid in question_ids:
        if qid in seen and qid not in duplicates:
            duplicates.append(qid)
        seen.add(qid)
    return duplicates


def score_submission(questions, responses) -> ScoredSubmission:
    """Score every response against the test's questions.

    ``responses`` is a sequence of objects with ``question_id`` and
    ``selected_options``. Callers reject unknown question ids beforehand;
    here they are skipped.
    """
    by_id = {question.id: question for question in questions}
    result = ScoredSubmission()
    for response in responses:
        question = by_id.get(response.question_id)
        if question is None:
            continue
        scored = score_question(question, response.selected_options)
        result.per_question.append(scored)
        result.total_score += scored.score
    return result


def parse_selected_option(question_type: str, stored: Optional[str]) -> List[str]:
    """Turn a stored ``selected_option`` back into the submitted selection."""
    if stored is None or stored == "":
        return []
    if QuestionType(question_type) is QuestionType.MULTIPLE_CHOICE:
        return [value for value in stored.split(MULTI_SEPARATOR) if value]
    return [stored]


def max_reachable_score(questions) -> float:
    total = 0
    for question in questions:
        scores = [option.score for option in question.options]
        if not scores or question.type == QuestionType.TEXT.value:
            continue
        if question.type == QuestionType.SINGLE_CHOICE.value:
            total += max(scores)
        else:
            total += sum(score for score in scores if score > 0)
    return total
