from typing import List, Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_api import admin_service, crud, schemas
from assessment_api.database import get_db
from assessment_api.errors import ValidationFailed
from assessment_api.models import User, UserRole
from assessment_api.routers import group_view, require_found
from assessment_api.security import require_admin

router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


# --- users ----------------------------------------------------------------

@router.get("/users", response_model=List[schemas.UserOut])
async def get_users(role: Optional[UserRole] = None, db: AsyncSession = Depends(get_db)):
    return await crud.list_users(db, role.value if role else None)


@router.post("/users", response_model=schemas.UserCreated, status_code=status.HTTP_201_CREATED)
async def create_user(payload: schemas.UserCreate, db: AsyncSession = Depends(get_db)):
    return await admin_service.create_user(db, payload)


@router.put("/users/{user_id}", response_model=schemas.UserOut)
async def update_user(user_id: str, payload: schemas.UserUpdate, db: AsyncSession = Depends(get_db)):
    return await admin_service.update_user(db, user_id, payload)


@router.delete("/users/{user_id}")
async def delete_user(user_id: str, db: AsyncSession = Depends(get_db), current: User = Depends(require_admin)):
    await admin_service.delete_user(db, user_id, current)
    return {"message": "User deleted"}


@router.post("/users/{user_id}/reset-password")
async def reset_password(user_id: str, payload: schemas.PasswordReset, db: AsyncSession = Depends(get_db)):
    await admin_service.reset_password(db, user_id, payload.password)
    return {"message": "Password updated"}


# --- groups ---------------------------------------------------------------

@router.get("/groups", response_model=List[schemas.GroupOut])
async def get_groups(db: AsyncSession = Depends(get_db)):
    return [group_view(group) for group in await crud.list_groups(db)]


@router.post("/groups", response_model=schemas.GroupDetail, status_code=status.HTTP_201_CREATED)
async def create_group(payload: schemas.GroupWrite, db: AsyncSession = Depends(get_db)):
    group = await crud.create_group(db, payload.name, payload.code, payload.curator_id)
    return group_view(group, with_students=True)


@router.get("/groups/{group_id}", response_model=schemas.GroupDetail)
async def get_group(group_id: str, db: AsyncSession = Depends(get_db)):
    return group_view(await crud.get_group_or_404(db, group_id), with_students=True)


@router.put("/groups/{group_id}", response_model=schemas.GroupDetail)
async def update_group(group_id: str, payload: schemas.GroupWrite, db: AsyncSession = Depends(get_db)):
    group = await crud.update_group(db, group_id, payload.name, payload.code, payload.curator_id)
    return group_view(group, with_students=True)


@router.delete("/groups/{group_id}")
async def delete_group(group_id: str, db: AsyncSession = Depends(get_db)):
    await admin_service.delete_group(db, group_id)
    return {"message": "Group deleted"}


# --- students -------------------------------------------------------------

@router.get("/groups/{group_id}/students", response_model=List[schemas.StudentOut])
async def get_students(group_id: str, db: AsyncSession = Depends(get_db)):
    await crud.get_group_or_404(db, group_id)
    return await crud.list_students(db, group_id)


@router.post(
    "/groups/{group_id}/students", response_model=List[schemas.StudentOut], status_code=status.HTTP_201_CREATED
)
async def add_students(group_id: str, payload: schemas.StudentsBulkWrite, db: AsyncSession = Depends(get_db)):
    return await admin_service.add_students(db, group_id, payload.students)


@router.post(
    "/groups/{group_id}/students/paste",
    response_model=List[schemas.StudentOut],
    status_code=status.HTTP_201_CREATED,
)
async def paste_students(group_id: str, request: Request, db: AsyncSession = Depends(get_db)):
    """Rows copied from a spreadsheet: last name, first name, middle name separated by tabs."""
    try:
        text = (await request.body()).decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationFailed("Pasted text is not valid UTF-8")
    return await admin_service.paste_students(db, group_id, text)


@router.put("/groups/{group_id}/students/{student_id}", response_model=schemas.StudentOut)
async def update_student(
    group_id: str, student_id: str, payload: schemas.StudentWrite, db: AsyncSession = Depends(get_db)
):
    return await admin_service.update_student(db, group_id, student_id, payload)


@router.delete("/groups/{group_id}/students/{student_id}")
async def delete_student(group_id: str, student_id: str, db: AsyncSession = Depends(get_db)):
    await admin_service.delete_student(db, group_id, student_id)
    return {"message": "Student deleted"}


# --- student categories ---------------------------------------------------

@router.get("/student-categories", response_model=List[schemas.CategoryOut])
async def get_categories(db: AsyncSession = Depends(get_db)):
    return await crud.list_categories(db)


@router.post("/student-categories", response_model=schemas.CategoryOut, status_code=status.HTTP_201_CREATED)
async def create_category(payload: schemas.CategoryWrite, db: AsyncSession = Depends(get_db)):
    return await admin_service.create_category(db, payload)


@router.get("/student-categories/{category_id}", response_model=schemas.CategoryOut)
async def get_category(category_id: str, db: AsyncSession = Depends(get_db)):
    return require_found(await crud.get_category(db, category_id), "Student category not found")


@router.put("/student-categories/{category_id}", response_model=schemas.CategoryOut)
async def update_category(category_id: str, payload: schemas.CategoryWrite, db: AsyncSession = Depends(get_db)):
    return await admin_service.update_category(db, category_id, payload)


@router.delete("/student-categories/{category_id}")
async def delete_category(category_id: str, db: AsyncSession = Depends(get_db)):
    await admin_service.delete_category(db, category_id)
    return {"message": "Student category deleted"}


# --- dashboard ------------------------------------------------------------

@router.get("/dashboard/stats", response_model=schemas.DashboardStats)
async def get_dashboard_stats(db: AsyncSession = Depends(get_db)):
    return await admin_service.dashboard_stats(db)
