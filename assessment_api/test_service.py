"""Authoring and publishing tests."""

import logging
from typing import Dict, List

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_api import crud
from assessment_api.errors import Forbidden, NotFound, ValidationFailed
from assessment_api.models import (
    Group,
    Option,
    Question,
    Student,
    Test,
    TestAssignment,
    TestResponse,
    TestResult,
    TestStatus,
    User,
    category_tests,
)
from assessment_api.reconciliation import plan_reconciliation, validate_questions
from assessment_api.schemas import TestWrite
from assessment_api.scoring import max_reachable_score
from assessment_api.security import is_admin
from assessment_api.tracker import CompletionReport, refresh_test_status

logger = logging.getLogger(__name__)


def _unique(values) -> List[str]:
    return list(dict.fromkeys(values))


async def can_manage(db: AsyncSession, user: User, test: Test) -> bool:
    """Admins, the author, and curators of a group the test is assigned to."""
    if is_admin(user) or test.author_id == user.id:
        return True
    group_ids = {assignment.group_id for assignment in test.assignments}
    if not group_ids:
        return False
    own = await db.execute(select(Group.id).where(Group.id.in_(group_ids), Group.curator_id == user.id))
    return own.first() is not None


def _check_can_edit(user: User, test: Test) -> None:
    if not (is_admin(user) or test.author_id == user.id):
        raise Forbidden("Only the author or an administrator can change this test")


async def _check_manage(db: AsyncSession, user: User, test: Test) -> None:
    if not await can_manage(db, user, test):
        raise Forbidden("You do not manage this test")


async def _validate_write(db: AsyncSession, payload: TestWrite, user: User) -> List[str]:
    if not payload.title:
        raise ValidationFailed("Test title is required")
    validate_questions(payload.questions)

    group_ids = _unique(payload.assigned_groups)
    invalid = await crud.missing_ids(db, Group, group_ids)
    if invalid:
        raise ValidationFailed(
            "The following group IDs are invalid: " + ", ".join(invalid),
            invalidGroupIds=invalid,
        )
    if group_ids and not is_admin(user):
        foreign = await db.execute(
            select(Group.name).where(Group.id.in_(group_ids), (Group.curator_id != user.id) | Group.curator_id.is_(None))
        )
        names = list(foreign.scalars().all())
        if names:
            raise Forbidden("Tests can only be assigned to your own groups: " + ", ".join(names))
    return group_ids


def _new_question(test_id: str, spec) -> Question:
    question = Question(test_id=test_id, text=spec.text, type=spec.type.value, order=spec.order)
    question.options = [
        Option(text=option.text, score=option.score, order=option.order) for option in spec.option_inserts
    ]
    return question


async def snapshot(db: AsyncSession, test: Test) -> Dict:
    """Full view of a test: questions with scored options, assignments, covered students."""
    group_ids = _unique(a.group_id for a in test.assignments if not a.student_id)
    student_ids = _unique(a.student_id for a in test.assignments if a.student_id)

    students: List[Student] = []
    if group_ids or student_ids:
        result = await db.execute(
            select(Student)
            .where(Student.group_id.in_(group_ids) | Student.id.in_(student_ids))
            .order_by(Student.last_name, Student.first_name)
        )
        students = list(result.scalars().all())

    return {
        "id": test.id,
        "title": test.title,
        "description": test.description,
        "status": test.status,
        "max_score": test.max_score,
        "author_id": test.author_id,
        "created_at": test.created_at,
        "updated_at": test.updated_at,
        "questions": test.questions,
        "assignments": test.assignments,
        "assigned_groups": group_ids,
        "students": students,
    }


def summary(test: Test) -> Dict:
    return {
        "id": test.id,
        "title": test.title,
        "description": test.description,
        "status": test.status,
        "max_score": test.max_score,
        "author_id": test.author_id,
        "created_at": test.created_at,
        "updated_at": test.updated_at,
        "question_count": len(test.questions),
        "assignment_count": len(test.assignments),
    }


async def create_test(db: AsyncSession, payload: TestWrite, author: User) -> Dict:
    group_ids = await _validate_write(db, payload, author)
    plan = plan_reconciliation([], payload.questions)

    test = Test(
        title=payload.title,
        description=payload.description or "",
        status=TestStatus.DRAFT.value,
        max_score=max_reachable_score(payload.questions),
        author_id=author.id,
    )
    db.add(test)
    await db.flush()

    for spec in plan.inserts:
        db.add(_new_question(test.id, spec))
    for group_id in group_ids:
        db.add(TestAssignment(test_id=test.id, group_id=group_id, unique_link=crud.new_link()))
    await db.flush()

    await refresh_test_status(db, test.id)
    await db.commit()
    logger.info(f"Test {test.id} created by {author.login} with {len(plan.inserts)} questions")
    return await snapshot(db, await crud.get_test(db, test.id))


async def _drop_questions(db: AsyncSession, question_ids: List[str]) -> None:
    """Delete questions with their options and responses, keeping stored totals consistent."""
    if not question_ids:
        return
    affected = (
        await db.execute(
            select(TestResponse.test_result_id).where(TestResponse.question_id.in_(question_ids)).distinct()
        )
    ).scalars().all()

    await db.execute(delete(TestResponse).where(TestResponse.question_id.in_(question_ids)))
    await db.execute(delete(Option).where(Option.question_id.in_(question_ids)))
    await db.execute(delete(Question).where(Question.id.in_(question_ids)))

    for result_id in affected:
        total = (
            await db.execute(
                select(func.coalesce(func.sum(TestResponse.score), 0)).where(TestResponse.test_result_id == result_id)
            )
        ).scalar_one()
        await db.execute(update(TestResult).where(TestResult.id == result_id).values(total_score=total))
    if affected:
        logger.info(f"Recomputed {len(affected)} result totals after removing questions {question_ids}")


async def _reconcile_group_assignments(db: AsyncSession, test: Test, group_ids: List[str]) -> None:
    """Group-wide assignments follow ``group_ids``; kept groups keep their links."""
    current = {a.group_id: a for a in test.assignments if not a.student_id}
    removed = [group_id for group_id in current if group_id not in group_ids]
    if removed:
        await db.execute(
            delete(TestAssignment).where(
                TestAssignment.test_id == test.id,
                TestAssignment.student_id.is_(None),
                TestAssignment.group_id.in_(removed),
            )
        )
    for group_id in group_ids:
        if group_id not in current:
            db.add(TestAssignment(test_id=test.id, group_id=group_id, unique_link=crud.new_link()))


async def update_test(db: AsyncSession, test_id: str, payload: TestWrite, user: User) -> Dict:
    test = await crud.get_test_or_404(db, test_id)
    _check_can_edit(user, test)
    group_ids = await _validate_write(db, payload, user)
    plan = plan_reconciliation(test.questions, payload.questions)

    test.title = payload.title
    test.description = payload.description or ""
    test.max_score = max_reachable_score(payload.questions)

    await _drop_questions(db, plan.deletes)

    stored = {question.id: question for question in test.questions}
    for spec in plan.updates:
        question = stored[spec.id]
        question.text = spec.text
        question.type = spec.type.value
        question.order = spec.order

        options = {option.id: option for option in question.options}
        if spec.option_deletes:
            await db.execute(delete(Option).where(Option.id.in_(spec.option_deletes)))
        for option_spec in spec.option_updates:
            option = options[option_spec.id]
            option.text = option_spec.text
            option.score = option_spec.score
            option.order = option_spec.order
        for option_spec in spec.option_inserts:
            db.add(Option(question_id=question.id, text=option_spec.text, score=option_spec.score, order=option_spec.order))

    for spec in plan.inserts:
        db.add(_new_question(test.id, spec))

    await _reconcile_group_assignments(db, test, group_ids)
    await db.flush()

    await refresh_test_status(db, test.id)
    await db.commit()
    logger.info(
        f"Test {test.id} edited by {user.login}: {len(plan.inserts)} added, "
        f"{len(plan.updates)} updated, {len(plan.deletes)} removed"
    )
    return await snapshot(db, await crud.get_test(db, test.id))


async def delete_test(db: AsyncSession, test_id: str, user: User) -> None:
    test = await crud.get_test_or_404(db, test_id)
    _check_can_edit(user, test)

    result_ids = select(TestResult.id).where(TestResult.test_id == test_id)
    question_ids = select(Question.id).where(Question.test_id == test_id)
    await db.execute(delete(TestResponse).where(TestResponse.test_result_id.in_(result_ids)))
    await db.execute(delete(TestResult).where(TestResult.test_id == test_id))
    await db.execute(delete(TestAssignment).where(TestAssignment.test_id == test_id))
    await db.execute(delete(category_tests).where(category_tests.c.test_id == test_id))
    await db.execute(delete(Option).where(Option.question_id.in_(question_ids)))
    await db.execute(delete(Question).where(Question.test_id == test_id))
    await db.execute(delete(Test).where(Test.id == test_id))
    await db.commit()
    logger.info(f"Test {test_id} deleted by {user.login}")


async def set_status(db: AsyncSession, test_id: str, status: TestStatus, user: User) -> Dict:
    test = await crud.get_test_or_404(db, test_id)
    await _check_manage(db, user, test)
    if test.status != status.value:
        logger.info(f"Test {test_id} status set {test.status} -> {status.value} by {user.login}")
        test.status = status.value
    await db.commit()
    return summary(await crud.get_test(db, test_id))


async def detail(db: AsyncSession, test_id: str, user: User) -> Dict:
    test = await crud.get_test_or_404(db, test_id)
    await _check_manage(db, user, test)
    return await snapshot(db, test)


async def check_completion(db: AsyncSession, test_id: str, user: User) -> CompletionReport:
    test = await crud.get_test_or_404(db, test_id)
    await _check_manage(db, user, test)
    report = await refresh_test_status(db, test_id)
    await db.commit()
    return report


async def list_assignments(db: AsyncSession, test_id: str, user: User) -> List[TestAssignment]:
    test = await crud.get_test_or_404(db, test_id)
    await _check_manage(db, user, test)
    return await crud.list_assignments(db, test_id)


async def assign_students(db: AsyncSession, test_id: str, group_id: str, student_ids: List[str], user: User) -> Dict:
    """Offer the test to chosen students of one group, each with a personal link."""
    test = await crud.get_test_or_404(db, test_id)
    group = await crud.get_group_or_404(db, group_id)
    if not is_admin(user) and group.curator_id != user.id:
        raise Forbidden("You are not the curator of this group")

    student_ids = _unique(student_ids)
    in_group = {student.id for student in group.students}
    invalid = [sid for sid in student_ids if sid not in in_group]
    if invalid:
        raise ValidationFailed(
            "Students do not belong to this group: " + ", ".join(invalid),
            invalidStudentIds=invalid,
        )

    already = {a.student_id for a in test.assignments if a.student_id}
    created = []
    for student_id in student_ids:
        if student_id in already:
            continue
        assignment = TestAssignment(
            test_id=test.id, group_id=group.id, student_id=student_id, unique_link=crud.new_link()
        )
        db.add(assignment)
        created.append(assignment)
    await db.flush()

    await refresh_test_status(db, test.id)
    await db.commit()
    logger.info(f"Test {test.id} assigned to {len(created)} students of group {group.code}")
    return {"students_assigned": len(created), "assignments": created}


async def take_view(db: AsyncSession, link: str) -> Dict:
    """The test behind a link, with the covered students who have not answered yet."""
    assignment = await crud.get_assignment_by_link(db, link)
    if assignment is None:
        raise NotFound("Test link not found")
    test = await crud.get_test_or_404(db, assignment.test_id)

    if assignment.student_id:
        stmt = select(Student).where(Student.id == assignment.student_id)
    else:
        stmt = select(Student).where(Student.group_id == assignment.group_id)
    done = select(TestResult.student_id).where(TestResult.test_id == test.id)
    pending = await db.execute(stmt.where(Student.id.not_in(done)).order_by(Student.last_name, Student.first_name))

    return {
        "link": link,
        "test_id": test.id,
        "title": test.title,
        "description": test.description,
        "questions": test.questions,
        "group_id": assignment.group_id,
        "students": list(pending.scalars().all()),
    }