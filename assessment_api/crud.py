import logging
import secrets
import string
from typing import Iterable, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from assessment_api import config
from assessment_api.errors import Conflict, NotFound, ValidationFailed
from assessment_api.models import (
    Group,
    Question,
    Student,
    StudentCategory,
    Test,
    TestAssignment,
    TestResponse,
    TestResult,
    User,
)

logger = logging.getLogger(__name__)


def new_link() -> str:
    return secrets.token_hex(config.LINK_TOKEN_BYTES)


def new_group_code() -> str:
    alphabet = string.ascii_uppercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(9))


async def missing_ids(db: AsyncSession, model, ids: Iterable[str]) -> List[str]:
    """Ids from ``ids`` that have no row in ``model``'s table, in request order."""
    ids = list(dict.fromkeys(ids))
    if not ids:
        return []
    found = set((await db.execute(select(model.id).where(model.id.in_(ids)))).scalars().all())
    return [value for value in ids if value not in found]


# --- tests ----------------------------------------------------------------

async def get_test(db: AsyncSession, test_id: str) -> Optional[Test]:
    result = await db.execute(
        select(Test)
        .where(Test.id == test_id)
        .options(
            selectinload(Test.questions).selectinload(Question.options),
            selectinload(Test.assignments),
            selectinload(Test.categories),
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_test_or_404(db: AsyncSession, test_id: str) -> Test:
    test = await get_test(db, test_id)
    if not test:
        raise NotFound("Test not found")
    return test


async def list_tests(db: AsyncSession, curator_id: Optional[str] = None) -> List[Test]:
    """All tests, or for a curator the ones they wrote or that reach their groups."""
    stmt = select(Test).options(selectinload(Test.questions), selectinload(Test.assignments))
    if curator_id:
        own_groups = select(Group.id).where(Group.curator_id == curator_id)
        assigned = select(TestAssignment.test_id).where(TestAssignment.group_id.in_(own_groups))
        stmt = stmt.where((Test.author_id == curator_id) | Test.id.in_(assigned))
    result = await db.execute(stmt.order_by(Test.created_at.desc()))
    return list(result.scalars().all())


async def list_assignments(db: AsyncSession, test_id: str) -> List[TestAssignment]:
    result = await db.execute(
        select(TestAssignment).where(TestAssignment.test_id == test_id).order_by(TestAssignment.created_at)
    )
    return list(result.scalars().all())


async def get_assignment_by_link(db: AsyncSession, link: str) -> Optional[TestAssignment]:
    result = await db.execute(select(TestAssignment).where(TestAssignment.unique_link == link))
    return result.scalar_one_or_none()


async def tests_assigned_to_groups(db: AsyncSession, group_ids: Iterable[str]) -> List[str]:
    group_ids = list(group_ids)
    if not group_ids:
        return []
    result = await db.execute(
        select(TestAssignment.test_id).where(TestAssignment.group_id.in_(group_ids)).distinct()
    )
    return list(result.scalars().all())


# --- groups ---------------------------------------------------------------

async def list_groups(db: AsyncSession, curator_id: Optional[str] = None) -> List[Group]:
    stmt = select(Group).options(selectinload(Group.curator), selectinload(Group.students))
    if curator_id:
        stmt = stmt.where(Group.curator_id == curator_id)
    result = await db.execute(stmt.order_by(Group.name))
    return list(result.scalars().all())


async def get_group(db: AsyncSession, group_id: str) -> Optional[Group]:
    result = await db.execute(
        select(Group)
        .where(Group.id == group_id)
        .options(selectinload(Group.curator), selectinload(Group.students))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_group_or_404(db: AsyncSession, group_id: str) -> Group:
    group = await get_group(db, group_id)
    if not group:
        raise NotFound("Group not found")
    return group


async def _check_curator(db: AsyncSession, curator_id: Optional[str]) -> None:
    if curator_id and await db.get(User, curator_id) is None:
        raise ValidationFailed("Curator does not exist", curatorId=curator_id)


async def _check_code_free(db: AsyncSession, code: str, group_id: Optional[str] = None) -> None:
    stmt = select(Group.id).where(Group.code == code)
    if group_id:
        stmt = stmt.where(Group.id != group_id)
    if (await db.execute(stmt)).first() is not None:
        raise Conflict(f"Group code '{code}' is already taken")


async def create_group(db: AsyncSession, name: str, code: Optional[str], curator_id: Optional[str]) -> Group:
    await _check_curator(db, curator_id)
    code = code or new_group_code()
    await _check_code_free(db, code)
    group = Group(name=name, code=code, curator_id=curator_id)
    db.add(group)
    await db.commit()
    logger.info(f"Created group {group.code} ({group.id})")
    return await get_group(db, group.id)


async def update_group(db: AsyncSession, group_id: str, name: str, code: Optional[str], curator_id: Optional[str]) -> Group:
    group = await get_group_or_404(db, group_id)
    await _check_curator(db, curator_id)
    if code:
        await _check_code_free(db, code, group_id)
        group.code = code
    group.name = name
    group.curator_id = curator_id
    await db.commit()
    logger.info(f"Updated group {group.code} ({group.id})")
    return await get_group(db, group.id)


async def delete_results(db: AsyncSession, result_ids: List[str]) -> None:
    if not result_ids:
        return
    await db.execute(delete(TestResponse).where(TestResponse.test_result_id.in_(result_ids)))
    await db.execute(delete(TestResult).where(TestResult.id.in_(result_ids)))


# --- students -------------------------------------------------------------

async def get_student(db: AsyncSession, student_id: str) -> Optional[Student]:
    result = await db.execute(
        select(Student).where(Student.id == student_id).options(selectinload(Student.group))
    )
    return result.scalar_one_or_none()


async def get_student_in_group(db: AsyncSession, group_id: str, student_id: str) -> Student:
    student = await get_student(db, student_id)
    if not student or student.group_id != group_id:
        raise NotFound("Student not found in this group")
    return student


async def list_students(db: AsyncSession, group_id: str) -> List[Student]:
    result = await db.execute(
        select(Student).where(Student.group_id == group_id).order_by(Student.last_name, Student.first_name)
    )
    return list(result.scalars().all())


# --- results --------------------------------------------------------------

async def get_result(db: AsyncSession, result_id: str) -> Optional[TestResult]:
    result = await db.execute(
        select(TestResult)
        .where(TestResult.id == result_id)
        .options(
            selectinload(TestResult.responses),
            selectinload(TestResult.student),
            selectinload(TestResult.test),
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_results(
    db: AsyncSession,
    group_id: Optional[str] = None,
    test_id: Optional[str] = None,
    student_id: Optional[str] = None,
    curator_id: Optional[str] = None,
) -> List[TestResult]:
    stmt = (
        select(TestResult)
        .join(TestResult.student)
        .options(selectinload(TestResult.student), selectinload(TestResult.test))
    )
    if group_id:
        stmt = stmt.where(Student.group_id == group_id)
    if test_id:
        stmt = stmt.where(TestResult.test_id == test_id)
    if student_id:
        stmt = stmt.where(TestResult.student_id == student_id)
    if curator_id:
        stmt = stmt.where(Student.group_id.in_(select(Group.id).where(Group.curator_id == curator_id)))
    result = await db.execute(stmt.order_by(TestResult.total_score.desc(), TestResult.completed_at))
    return list(result.scalars().all())


async def find_result(db: AsyncSession, test_id: str, student_id: str) -> Optional[TestResult]:
    result = await db.execute(
        select(TestResult).where(TestResult.test_id == test_id, TestResult.student_id == student_id)
    )
    return result.scalar_one_or_none()


# --- categories -----------------------------------------------------------

async def list_categories(db: AsyncSession) -> List[StudentCategory]:
    result = await db.execute(
        select(StudentCategory).options(selectinload(StudentCategory.tests)).order_by(StudentCategory.min_score)
    )
    return list(result.scalars().all())


async def get_category(db: AsyncSession, category_id: str) -> Optional[StudentCategory]:
    result = await db.execute(
        select(StudentCategory)
        .where(StudentCategory.id == category_id)
        .options(selectinload(StudentCategory.tests))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def categories_for_test(db: AsyncSession, test_id: Optional[str]) -> List[StudentCategory]:
    """Categories linked to the test, falling back to every category when none are."""
    if test_id:
        linked = await db.execute(
            select(StudentCategory)
            .where(StudentCategory.tests.any(Test.id == test_id))
            .order_by(StudentCategory.min_score)
        )
        categories = list(linked.scalars().all())
        if categories:
            return categories
    result = await db.execute(select(StudentCategory).order_by(StudentCategory.min_score))
    return list(result.scalars().all())


# --- users ----------------------------------------------------------------

async def list_users(db: AsyncSession, role: Optional[str] = None) -> List[User]:
    stmt = select(User).options(selectinload(User.groups))
    if role:
        stmt = stmt.where(User.role == role)
    result = await db.execute(stmt.order_by(User.name))
    return list(result.scalars().all())


async def get_user(db: AsyncSession, user_id: str) -> Optional[User]:
    result = await db.execute(
        select(User)
        .where(User.id == user_id)
        .options(selectinload(User.groups))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_user_or_404(db: AsyncSession, user_id: str) -> User:
    user = await get_user(db, user_id)
    if not user:
        raise NotFound("User not found")
    return user


async def login_taken(db: AsyncSession, login: str, user_id: Optional[str] = None) -> bool:
    stmt = select(User.id).where(User.login == login)
    if user_id:
        stmt = stmt.where(User.id != user_id)
    return (await db.execute(stmt)).first() is not None


async def release_curated_groups(db: AsyncSession, user_id: str) -> None:
    await db.execute(update(Group).where(Group.curator_id == user_id).values(curator_id=None))


async def count_rows(db: AsyncSession, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()
