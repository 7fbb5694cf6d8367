"""Administration of users, groups, students and score categories."""

import logging
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_api import crud
from assessment_api.categories import validate_category_range
from assessment_api.errors import Conflict, NotFound, ValidationFailed
from assessment_api.models import (
    Group,
    Student,
    StudentCategory,
    Test,
    TestAssignment,
    TestResult,
    User,
    UserRole,
)
from assessment_api.roster import parse_pasted_roster
from assessment_api.schemas import CategoryWrite, StudentWrite, UserCreate, UserUpdate
from assessment_api.security import generate_temporary_password, hash_password
from assessment_api.tracker import refresh_test_status

logger = logging.getLogger(__name__)


async def _refresh_tests(db: AsyncSession, test_ids: Iterable[str]) -> None:
    for test_id in set(test_ids):
        await refresh_test_status(db, test_id)


# --- groups ---------------------------------------------------------------

async def delete_group(db: AsyncSession, group_id: str) -> None:
    """Remove a group with its students, their results and the group's assignments."""
    group = await crud.get_group_or_404(db, group_id)
    affected_tests = await crud.tests_assigned_to_groups(db, [group.id])

    student_ids = select(Student.id).where(Student.group_id == group.id)
    result_ids = (await db.execute(select(TestResult.id).where(TestResult.student_id.in_(student_ids)))).scalars().all()
    await crud.delete_results(db, list(result_ids))
    await db.execute(delete(TestAssignment).where(TestAssignment.group_id == group.id))
    await db.execute(delete(Student).where(Student.group_id == group.id))
    await db.execute(delete(Group).where(Group.id == group.id))

    await _refresh_tests(db, affected_tests)
    await db.commit()
    logger.info(f"Deleted group {group.code} ({group.id}) with {len(result_ids)} results")


# --- students -------------------------------------------------------------

async def add_students(db: AsyncSession, group_id: str, rows: List) -> List[Student]:
    group = await crud.get_group_or_404(db, group_id)
    students = [
        Student(group_id=group.id, first_name=row.first_name, last_name=row.last_name, middle_name=row.middle_name or None)
        for row in rows
    ]
    db.add_all(students)
    await db.flush()

    # New students reopen tests the group had already finished
    await _refresh_tests(db, await crud.tests_assigned_to_groups(db, [group.id]))
    await db.commit()
    logger.info(f"Added {len(students)} students to group {group.code}")
    return students


async def paste_students(db: AsyncSession, group_id: str, text: str) -> List[Student]:
    await crud.get_group_or_404(db, group_id)
    return await add_students(db, group_id, parse_pasted_roster(text))


async def update_student(db: AsyncSession, group_id: str, student_id: str, payload: StudentWrite) -> Student:
    student = await crud.get_student_in_group(db, group_id, student_id)
    student.first_name = payload.first_name
    student.last_name = payload.last_name
    student.middle_name = payload.middle_name or None
    await db.commit()
    return student


async def delete_student(db: AsyncSession, group_id: str, student_id: str) -> None:
    student = await crud.get_student_in_group(db, group_id, student_id)
    affected_tests = set(await crud.tests_assigned_to_groups(db, [group_id]))

    result_ids = (await db.execute(select(TestResult.id).where(TestResult.student_id == student.id))).scalars().all()
    await crud.delete_results(db, list(result_ids))
    await db.execute(delete(TestAssignment).where(TestAssignment.student_id == student.id))
    await db.execute(delete(Student).where(Student.id == student.id))

    await _refresh_tests(db, affected_tests)
    await db.commit()
    logger.info(f"Deleted student {student.id} from group {group_id}")


# --- categories -----------------------------------------------------------

async def _linked_tests(db: AsyncSession, test_ids: List[str]) -> List[Test]:
    test_ids = list(dict.fromkeys(test_ids))
    invalid = await crud.missing_ids(db, Test, test_ids)
    if invalid:
        raise ValidationFailed("Unknown test ids: " + ", ".join(invalid), invalidTestIds=invalid)
    if not test_ids:
        return []
    return list((await db.execute(select(Test).where(Test.id.in_(test_ids)))).scalars().all())


async def create_category(db: AsyncSession, payload: CategoryWrite) -> StudentCategory:
    validate_category_range(payload.name, payload.min_score, payload.max_score, await crud.list_categories(db))
    tests = await _linked_tests(db, payload.test_ids)

    category = StudentCategory(
        name=payload.name,
        min_score=payload.min_score,
        max_score=payload.max_score,
        description=payload.description,
        tests=tests,
    )
    db.add(category)
    await db.commit()
    logger.info(f"Created category '{category.name}' [{category.min_score}, {category.max_score}]")
    return await crud.get_category(db, category.id)


async def update_category(db: AsyncSession, category_id: str, payload: CategoryWrite) -> StudentCategory:
    category = await crud.get_category(db, category_id)
    if not category:
        raise NotFound("Student category not found")
    validate_category_range(
        payload.name, payload.min_score, payload.max_score, await crud.list_categories(db), exclude_id=category.id
    )
    tests = await _linked_tests(db, payload.test_ids)

    category.name = payload.name
    category.min_score = payload.min_score
    category.max_score = payload.max_score
    category.description = payload.description
    category.tests = tests
    await db.commit()
    logger.info(f"Updated category '{category.name}' [{category.min_score}, {category.max_score}]")
    return await crud.get_category(db, category.id)


async def delete_category(db: AsyncSession, category_id: str) -> None:
    category = await crud.get_category(db, category_id)
    if not category:
        raise NotFound("Student category not found")
    category.tests = []
    await db.delete(category)
    await db.commit()
    logger.info(f"Deleted category '{category.name}'")


# --- users ----------------------------------------------------------------

async def create_user(db: AsyncSession, payload: UserCreate) -> Dict:
    if await crud.login_taken(db, payload.login):
        raise Conflict("A user with this login already exists")
    temporary = None if payload.password else generate_temporary_password()
    user = User(
        name=payload.name,
        login=payload.login,
        email=payload.email,
        role=payload.role.value,
        password_hash=hash_password(payload.password or temporary),
    )
    db.add(user)
    await db.commit()
    logger.info(f"Created {user.role} '{user.login}'")
    return {"user": await crud.get_user(db, user.id), "temporary_password": temporary}


async def update_user(db: AsyncSession, user_id: str, payload: UserUpdate) -> User:
    user = await crud.get_user_or_404(db, user_id)
    if await crud.login_taken(db, payload.login, user.id):
        raise Conflict("A user with this login already exists")

    user.name = payload.name
    user.login = payload.login
    user.role = payload.role.value
    if payload.email:
        user.email = payload.email

    if payload.group_ids is not None:
        group_ids = list(dict.fromkeys(payload.group_ids))
        invalid = await crud.missing_ids(db, Group, group_ids)
        if invalid:
            raise ValidationFailed("Groups not found: " + ", ".join(invalid), invalidGroupIds=invalid)
        await crud.release_curated_groups(db, user.id)
        if payload.role is UserRole.CURATOR and group_ids:
            groups = (await db.execute(select(Group).where(Group.id.in_(group_ids)))).scalars().all()
            for group in groups:
                group.curator_id = user.id
    elif payload.role is not UserRole.CURATOR:
        await crud.release_curated_groups(db, user.id)

    await db.commit()
    logger.info(f"Updated user '{user.login}'")
    return await crud.get_user(db, user.id)


async def delete_user(db: AsyncSession, user_id: str, current: User) -> None:
    user = await crud.get_user_or_404(db, user_id)
    if user.id == current.id:
        raise ValidationFailed("You cannot delete your own account")
    await crud.release_curated_groups(db, user.id)
    await db.execute(delete(User).where(User.id == user.id))
    await db.commit()
    logger.info(f"Deleted user '{user.login}'")


async def reset_password(db: AsyncSession, user_id: str, password: str) -> User:
    user = await crud.get_user_or_404(db, user_id)
    user.password_hash = hash_password(password)
    await db.commit()
    logger.info(f"Password reset for '{user.login}'")
    return user


# --- dashboard ------------------------------------------------------------

async def _grouped_counts(db: AsyncSession, column) -> Dict[str, int]:
    rows = await db.execute(select(column, func.count()).group_by(column))
    return {key: count for key, count in rows.all()}


def _daily_series(moments: Iterable[datetime], today: date, days: int = 7) -> List[Dict]:
    per_day = Counter(moment.date() for moment in moments)
    return [
        {"day": day, "count": per_day.get(day, 0)}
        for day in (today - timedelta(days=offset) for offset in range(days - 1, -1, -1))
    ]


async def dashboard_stats(db: AsyncSession, now: Optional[datetime] = None) -> Dict:
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(days=7)

    users_by_role = {role.value: 0 for role in UserRole}
    users_by_role.update(await _grouped_counts(db, User.role))
    tests_by_status = await _grouped_counts(db, Test.status)

    recent = (await db.execute(select(TestResult.completed_at).where(TestResult.completed_at >= since))).scalars().all()

    return {
        "users_by_role": users_by_role,
        "tests_by_status": tests_by_status,
        "groups": await crud.count_rows(db, Group),
        "students": await crud.count_rows(db, Student),
        "results": await crud.count_rows(db, TestResult),
        "results_last_week": _daily_series(recent, now.date()),
    }
