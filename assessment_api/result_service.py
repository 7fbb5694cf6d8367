"""Storing submissions and reporting on results."""

import logging
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from assessment_api import crud
from assessment_api.aggregation import bucket_results, categorize, summarize
from assessment_api.errors import Conflict, Forbidden, NotFound, ValidationFailed
from assessment_api.export import build_results_workbook
from assessment_api.models import (
    AssignmentStatus,
    Group,
    Question,
    Student,
    Test,
    TestAssignment,
    TestResponse,
    TestResult,
    User,
)
from assessment_api.schemas import SubmitResultRequest
from assessment_api.scoring import (
    find_duplicate_question_ids,
    find_invalid_question_ids,
    parse_selected_option,
    score_submission,
)
from assessment_api.security import is_admin
from assessment_api.tracker import refresh_test_status

logger = logging.getLogger(__name__)

DUPLICATE_SUBMISSION_MARKERS = (
    "uq_test_results_test_student",
    # SQLite names the columns instead of the constraint
    "test_results.test_id, test_results.student_id",
)


def is_duplicate_submission(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return any(marker in message for marker in DUPLICATE_SUBMISSION_MARKERS)


async def submit(db: AsyncSession, payload: SubmitResultRequest) -> TestResult:
    """Score a submission and store it with its responses in one transaction."""
    test = await crud.get_test(db, payload.test_id)
    if not test:
        raise NotFound("Test not found")
    if await db.get(Student, payload.student_id) is None:
        raise NotFound("Student not found")

    question_ids = [response.question_id for response in payload.responses]
    invalid = find_invalid_question_ids(test.questions, question_ids) + find_duplicate_question_ids(question_ids)
    if invalid:
        # The test was most likely edited while the student was answering
        raise ValidationFailed(
            "Invalid question ids in submission: " + ", ".join(invalid),
            invalidQuestionIds=invalid,
        )

    if await crud.find_result(db, test.id, payload.student_id):
        raise Conflict("This student has already submitted this test")

    scored = score_submission(test.questions, payload.responses)
    result = TestResult(test_id=test.id, student_id=payload.student_id, total_score=scored.total_score)
    result.responses = [
        TestResponse(question_id=item.question_id, selected_option=item.selected_option, score=item.score)
        for item in scored.per_question
    ]
    db.add(result)
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        if not is_duplicate_submission(exc):
            raise
        raise Conflict("This student has already submitted this test")

    await refresh_test_status(db, test.id)
    await db.commit()
    logger.info(
        f"Stored result {result.id} for student {payload.student_id} on test {test.id}: {scored.total_score}"
    )
    return await crud.get_result(db, result.id)


async def _check_result_access(db: AsyncSession, user: User, result: TestResult) -> None:
    if is_admin(user):
        return
    group = await db.get(Group, result.student.group_id)
    if group is None or group.curator_id != user.id:
        raise Forbidden("This result belongs to a group you do not curate")


async def reset(db: AsyncSession, result_id: str, user: User) -> TestResult:
    """Delete a result and its responses so the student can take the test again."""
    result = await crud.get_result(db, result_id)
    if not result:
        raise NotFound("Test result not found")
    await _check_result_access(db, user, result)

    test_id = result.test_id
    await crud.delete_results(db, [result.id])
    await refresh_test_status(db, test_id)
    await db.commit()
    logger.info(f"Result {result_id} reset by {user.login}")
    return result


async def detail(db: AsyncSession, result_id: str, user: User) -> Dict:
    result = await crud.get_result(db, result_id)
    if not result:
        raise NotFound("Test result not found")
    await _check_result_access(db, user, result)
    category = categorize(result.total_score, await crud.categories_for_test(db, result.test_id))
    types = dict((await db.execute(select(Question.id, Question.type).where(Question.test_id == result.test_id))).all())
    responses = [
        {
            "id": response.id,
            "question_id": response.question_id,
            "selected_option": response.selected_option,
            "selected_options": parse_selected_option(types[response.question_id], response.selected_option),
            "score": response.score,
        }
        for response in result.responses
    ]
    return {
        "id": result.id,
        "test_id": result.test_id,
        "test_title": result.test.title,
        "student_id": result.student_id,
        "student": result.student,
        "total_score": result.total_score,
        "completed_at": result.completed_at,
        "responses": responses,
        "category": category,
    }


def _rows(results: List[TestResult], categories) -> List[Dict]:
    return [
        {
            "id": result.id,
            "test_id": result.test_id,
            "test_title": result.test.title,
            "student_id": result.student_id,
            "student": result.student,
            "total_score": result.total_score,
            "completed_at": result.completed_at,
            "category": categorize(result.total_score, categories),
        }
        for result in results
    ]


async def listing(
    db: AsyncSession, user: User, group_id: Optional[str] = None, test_id: Optional[str] = None
) -> Dict:
    """Results for a group and/or test with score statistics and category buckets."""
    results = await crud.list_results(
        db, group_id=group_id, test_id=test_id, curator_id=None if is_admin(user) else user.id
    )
    categories = await crud.categories_for_test(db, test_id)
    stats = summarize(result.total_score for result in results)
    return {
        "results": _rows(results, categories),
        "stats": {
            "total_students": stats.count,
            "average_score": stats.average,
            "highest_score": stats.max,
            "lowest_score": stats.min,
        },
        "categories": [
            {
                "category_id": bucket.category_id,
                "name": bucket.name,
                "min_score": bucket.min_score,
                "max_score": bucket.max_score,
                "count": bucket.count,
                "result_ids": bucket.result_ids,
            }
            for bucket in bucket_results(results, categories)
        ],
    }


async def student_results(db: AsyncSession, student_id: str, user: User) -> List[Dict]:
    student = await crud.get_student(db, student_id)
    if not student:
        raise NotFound("Student not found")
    if not is_admin(user) and student.group.curator_id != user.id:
        raise Forbidden("This student belongs to a group you do not curate")
    results = await crud.list_results(db, student_id=student_id)
    return _rows(results, await crud.categories_for_test(db, None))


async def group_test_statuses(db: AsyncSession, group_id: str, user: User) -> Dict:
    """Per student, where they stand on every test offered to the group."""
    group = await crud.get_group_or_404(db, group_id)
    if not is_admin(user) and group.curator_id != user.id:
        raise Forbidden("You are not the curator of this group")

    assignments = (
        await db.execute(
            select(TestAssignment)
            .where(TestAssignment.group_id == group_id)
            .options(selectinload(TestAssignment.test))
            .order_by(TestAssignment.created_at)
        )
    ).scalars().all()

    tests: Dict[str, Test] = {}
    offered: Dict[str, set] = {}
    for assignment in assignments:
        tests.setdefault(assignment.test_id, assignment.test)
        targets = {assignment.student_id} if assignment.student_id else {s.id for s in group.students}
        offered.setdefault(assignment.test_id, set()).update(targets)

    results = {}
    if tests:
        rows = await db.execute(
            select(TestResult).where(
                TestResult.test_id.in_(list(tests)),
                TestResult.student_id.in_([s.id for s in group.students]),
            )
        )
        results = {(r.test_id, r.student_id): r for r in rows.scalars().all()}

    students = []
    for student in group.students:
        statuses = []
        for test_id in tests:
            if student.id not in offered[test_id]:
                continue
            result = results.get((test_id, student.id))
            statuses.append({
                "test_id": test_id,
                "status": AssignmentStatus.COMPLETED if result else AssignmentStatus.ACTIVE,
                "result_id": result.id if result else None,
                "total_score": result.total_score if result else None,
            })
        students.append({"student": student, "tests": statuses})

    return {
        "group_id": group.id,
        "tests": [{"id": test.id, "title": test.title} for test in tests.values()],
        "students": students,
    }


async def export(db: AsyncSession, user: User, test_id: str, group_id: Optional[str] = None):
    """Excel workbook with the results of one test, optionally for one group."""
    test = await crud.get_test_or_404(db, test_id)
    stmt = (
        select(TestResult)
        .join(TestResult.student)
        .where(TestResult.test_id == test_id)
        .options(selectinload(TestResult.student), selectinload(TestResult.responses))
    )
    if group_id:
        stmt = stmt.where(Student.group_id == group_id)
    if not is_admin(user):
        stmt = stmt.where(Student.group_id.in_(select(Group.id).where(Group.curator_id == user.id)))
    results = list((await db.execute(stmt)).scalars().all())

    group_ids = {result.student.group_id for result in results}
    names = {}
    if group_ids:
        rows = await db.execute(select(Group.id, Group.name).where(Group.id.in_(group_ids)))
        names = {gid: name for gid, name in rows.all()}

    logger.info(f"Exporting {len(results)} results of test {test_id} for {user.login}")
    return build_results_workbook(test, results, await crud.categories_for_test(db, test_id), names)
