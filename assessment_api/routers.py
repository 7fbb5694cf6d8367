from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_api import crud, result_service, schemas, test_service
from assessment_api.database import get_db
from assessment_api.errors import NotFound
from assessment_api.models import User
from assessment_api.security import is_admin, require_staff

router = APIRouter()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


# Root endpoint
@router.get("/")
async def root():
    return {"message": "API is working", "docs": "/docs", "redoc": "/redoc"}


# --- student facing -------------------------------------------------------

@router.get("/take/{link}", response_model=schemas.TakeTestView)
async def take_test(link: str, db: AsyncSession = Depends(get_db)):
    return await test_service.take_view(db, link)


@router.post("/test-results", response_model=schemas.ResultOut, status_code=status.HTTP_201_CREATED)
async def submit_result(payload: schemas.SubmitResultRequest, db: AsyncSession = Depends(get_db)):
    return await result_service.submit(db, payload)


# --- tests ----------------------------------------------------------------

@router.get("/tests", response_model=List[schemas.TestSummary])
async def get_all_tests(db: AsyncSession = Depends(get_db), user: User = Depends(require_staff)):
    tests = await crud.list_tests(db, curator_id=None if is_admin(user) else user.id)
    return [test_service.summary(test) for test in tests]


@router.post("/tests", response_model=schemas.TestDetail, status_code=status.HTTP_201_CREATED)
async def create_test(
    payload: schemas.TestWrite, db: AsyncSession = Depends(get_db), user: User = Depends(require_staff)
):
    return await test_service.create_test(db, payload, user)


@router.get("/tests/{test_id}", response_model=schemas.TestDetail)
async def get_test(test_id: str, db: AsyncSession = Depends(get_db), user: User = Depends(require_staff)):
    return await test_service.detail(db, test_id, user)


@router.put("/tests/{test_id}", response_model=schemas.TestDetail)
async def update_test(
    test_id: str,
    payload: schemas.TestWrite,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_staff),
):
    return await test_service.update_test(db, test_id, payload, user)


@router.delete("/tests/{test_id}")
async def delete_test(test_id: str, db: AsyncSession = Depends(get_db), user: User = Depends(require_staff)):
    await test_service.delete_test(db, test_id, user)
    return {"message": "Test deleted"}


@router.patch("/tests/{test_id}/status", response_model=schemas.TestSummary)
async def set_test_status(
    test_id: str,
    payload: schemas.TestStatusUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_staff),
):
    return await test_service.set_status(db, test_id, payload.status, user)


@router.post("/tests/{test_id}/check-completion", response_model=schemas.CompletionStatus)
async def check_completion(test_id: str, db: AsyncSession = Depends(get_db), user: User = Depends(require_staff)):
    return await test_service.check_completion(db, test_id, user)


@router.get("/tests/{test_id}/assignments", response_model=List[schemas.AssignmentOut])
async def get_assignments(test_id: str, db: AsyncSession = Depends(get_db), user: User = Depends(require_staff)):
    return await test_service.list_assignments(db, test_id, user)


@router.post("/tests/{test_id}/assign-students", response_model=schemas.AssignStudentsResponse)
async def assign_students(
    test_id: str,
    payload: schemas.AssignStudentsRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_staff),
):
    return await test_service.assign_students(db, test_id, payload.group_id, payload.student_ids, user)


# --- results --------------------------------------------------------------

@router.get("/test-results", response_model=schemas.ResultsListing)
async def get_results(
    group_id: Optional[str] = Query(default=None, alias="groupId"),
    test_id: Optional[str] = Query(default=None, alias="testId"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_staff),
):
    return await result_service.listing(db, user, group_id=group_id, test_id=test_id)


@router.get("/test-results/export")
async def export_results(
    test_id: str = Query(..., alias="testId"),
    group_id: Optional[str] = Query(default=None, alias="groupId"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_staff),
):
    """
    Export test results as an Excel file for a given test ID.
    """
    excel_file, filename = await result_service.export(db, user, test_id, group_id)
    return StreamingResponse(
        excel_file,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get("/test-results/{result_id}", response_model=schemas.ResultDetail)
async def get_result(result_id: str, db: AsyncSession = Depends(get_db), user: User = Depends(require_staff)):
    return await result_service.detail(db, result_id, user)


@router.delete("/test-results/{result_id}", response_model=schemas.ResultOut)
async def reset_result(result_id: str, db: AsyncSession = Depends(get_db), user: User = Depends(require_staff)):
    return await result_service.reset(db, result_id, user)


# --- curator views --------------------------------------------------------

@router.get("/curator/groups", response_model=List[schemas.GroupDetail])
async def get_curator_groups(db: AsyncSession = Depends(get_db), user: User = Depends(require_staff)):
    groups = await crud.list_groups(db, curator_id=None if is_admin(user) else user.id)
    return [group_view(group, with_students=True) for group in groups]


@router.get("/curator/groups/{group_id}/test-statuses", response_model=schemas.GroupTestStatuses)
async def get_group_test_statuses(
    group_id: str, db: AsyncSession = Depends(get_db), user: User = Depends(require_staff)
):
    return await result_service.group_test_statuses(db, group_id, user)


@router.get("/curator/students/{student_id}/test-results", response_model=List[schemas.ResultRow])
async def get_student_results(
    student_id: str, db: AsyncSession = Depends(get_db), user: User = Depends(require_staff)
):
    return await result_service.student_results(db, student_id, user)


def group_view(group, with_students: bool = False) -> dict:
    view = {
        "id": group.id,
        "code": group.code,
        "name": group.name,
        "curator": group.curator,
        "student_count": len(group.students),
    }
    if with_students:
        view["students"] = group.students
    return view


def require_found(value, message: str):
    if value is None:
        raise NotFound(message)
    return value
