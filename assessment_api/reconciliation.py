"""Diffing a test's stored questions against the desired question list.

The incoming list is the desired end state. Questions and options are matched
by id; whatever is not matched is inserted or deleted. Order fields always
come from the position in the incoming list.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from assessment_api.errors import ValidationFailed
from assessment_api.models import QuestionType


@dataclass
class OptionSpec:
    id: Optional[str]
    text: str
    score: float
    order: int


@dataclass
class QuestionSpec:
    id: Optional[str]
    text: str
    type: QuestionType
    order: int
    option_inserts: List[OptionSpec] = field(default_factory=list)
    option_updates: List[OptionSpec] = field(default_factory=list)
    option_deletes: List[str] = field(default_factory=list)


@dataclass
class ReconciliationPlan:
    inserts: List[QuestionSpec] = field(default_factory=list)
    updates: List[QuestionSpec] = field(default_factory=list)
    deletes: List[str] = field(default_factory=list)


def validate_questions(questions: Sequence) -> None:
    """Shape checks that pydantic cannot express, numbered the way authors see them."""
    for index, question in enumerate(questions, start=1):
        if not (question.text or "").strip():
            raise ValidationFailed(f"Question {index} is missing text")
        if QuestionType(question.type) is QuestionType.TEXT:
            continue
        if not question.options:
            raise ValidationFailed(f"Question {index} must have at least one option")
        for opt_index, option in enumerate(question.options, start=1):
            if not (option.text or "").strip():
                raise ValidationFailed(f"Option {opt_index} in question {index} is missing text")


def _plan_options(incoming_options, existing_option_ids, question_type) -> tuple:
    inserts, updates = [], []
    claimed = set()
    if QuestionType(question_type) is not QuestionType.TEXT:
        for position, option in enumerate(incoming_options, start=1):
            spec = OptionSpec(option.id, option.text.strip(), option.score or 0, position)
            if option.id and option.id in existing_option_ids and option.id not in claimed:
                claimed.add(option.id)
                updates.append(spec)
            else:
                spec.id = None
                inserts.append(spec)
    deletes = [option_id for option_id in existing_option_ids if option_id not in claimed]
    return inserts, updates, deletes


def plan_reconciliation(existing: Sequence, incoming: Sequence) -> ReconciliationPlan:
    """Compute the inserts, updates and deletes turning ``existing`` into ``incoming``.

    ``existing`` are stored questions (with ``options``); ``incoming`` are the
    submitted questions, each optionally carrying the id of a stored one.
    """
    existing_by_id = {question.id: question for question in existing}

    incoming_ids = [question.id for question in incoming if question.id]
    unknown = [qid for qid in incoming_ids if qid not in existing_by_id]
    if unknown:
        raise ValidationFailed(
            "Questions do not belong to this test: " + ", ".join(unknown),
            invalidQuestionIds=unknown,
        )
    repeated = sorted({qid for qid in incoming_ids if incoming_ids.count(qid) > 1})
    if repeated:
        raise ValidationFailed(
            "Questions listed more than once: " + ", ".join(repeated),
            invalidQuestionIds=repeated,
        )

    plan = ReconciliationPlan()
    for position, question in enumerate(incoming, start=1):
        question_type = QuestionType(question.type)
        stored = existing_by_id.get(question.id) if question.id else None
        existing_option_ids = [option.id for option in stored.options] if stored is not None else []

        inserts, updates, deletes = _plan_options(question.options, existing_option_ids, question_type)
        spec = QuestionSpec(
            id=stored.id if stored is not None else None,
            text=question.text.strip(),
            type=question_type,
            order=position,
            option_inserts=inserts,
            option_updates=updates,
            option_deletes=deletes,
        )
        if stored is None:
            plan.inserts.append(spec)
        else:
            plan.updates.append(spec)

    keep = set(incoming_ids)
    plan.deletes = [question.id for question in existing if question.id not in keep]
    return plan
