"""Assignment completion tracking and the test-level status rollup."""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_api.models import AssignmentStatus, Student, Test, TestAssignment, TestResult, TestStatus

logger = logging.getLogger(__name__)


@dataclass
class CompletionReport:
    test_id: str
    status: TestStatus
    all_students_completed: bool
    completed_results: int
    total_assigned: int


def covered_students(assignment, students_by_group: Dict[str, Set[str]]) -> Set[str]:
    """Students an assignment is offered to: one student, or the whole group."""
    if assignment.student_id:
        return {assignment.student_id}
    return set(students_by_group.get(assignment.group_id, ()))


def assignment_complete(covered: Set[str], finished: Set[str]) -> bool:
    return bool(covered) and covered <= finished


def rollup_status(current: str, assignments_complete: Sequence[bool]) -> TestStatus:
    """Test status implied by its assignments.

    Without assignments nothing is implied and the current status stands.
    """
    current = TestStatus(current)
    if not assignments_complete:
        return current
    if all(assignments_complete):
        return TestStatus.COMPLETED
    return TestStatus.ACTIVE


async def _students_by_group(db: AsyncSession, group_ids: Iterable[str]) -> Dict[str, Set[str]]:
    group_ids = list(set(group_ids))
    mapping: Dict[str, Set[str]] = defaultdict(set)
    if not group_ids:
        return mapping
    rows = await db.execute(select(Student.id, Student.group_id).where(Student.group_id.in_(group_ids)))
    for student_id, group_id in rows.all():
        mapping[group_id].add(student_id)
    return mapping


def lock_test(test_id: str):
    """Row lock on the test so concurrent final submissions roll up one after another."""
    return select(Test).where(Test.id == test_id).with_for_update()


async def refresh_test_status(db: AsyncSession, test_id: str) -> Optional[CompletionReport]:
    """Recompute every assignment of a test and roll the result up into the test.

    Runs inside the caller's transaction; nothing is committed here.
    """
    test = (await db.execute(lock_test(test_id))).scalar_one_or_none()
    if test is None:
        return None

    assignments = (
        await db.execute(select(TestAssignment).where(TestAssignment.test_id == test_id))
    ).scalars().all()
    students_by_group = await _students_by_group(db, (a.group_id for a in assignments if not a.student_id))
    finished = set(
        (await db.execute(select(TestResult.student_id).where(TestResult.test_id == test_id))).scalars().all()
    )

    everyone: Set[str] = set()
    states = []
    for assignment in assignments:
        covered = covered_students(assignment, students_by_group)
        everyone |= covered
        complete = assignment_complete(covered, finished)
        states.append(complete)
        new_status = AssignmentStatus.COMPLETED if complete else AssignmentStatus.ACTIVE
        if assignment.status != new_status.value:
            assignment.status = new_status.value

    status = rollup_status(test.status, states)
    if test.status != status.value:
        logger.info(f"Test {test_id} status {test.status} -> {status.value}")
        test.status = status.value
    await db.flush()

    return CompletionReport(
        test_id=test_id,
        status=status,
        all_students_completed=bool(states) and all(states),
        completed_results=len(everyone & finished),
        total_assigned=len(everyone),
    )
