from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from assessment_api.models import AssignmentStatus, QuestionType, TestStatus, UserRole


class CamelModel(BaseModel):
    """Base for every wire model: camelCase JSON, snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def _strip(value):
    return value.strip() if isinstance(value, str) else value


# --- references -----------------------------------------------------------

class UserRef(CamelModel):
    id: str
    name: str


class GroupRef(CamelModel):
    id: str
    name: str
    code: str


class TestRef(CamelModel):
    id: str
    title: str


class CategoryRef(CamelModel):
    id: str
    name: str


# --- tests ----------------------------------------------------------------

class OptionIn(CamelModel):
    id: Optional[str] = None
    text: str = ""
    score: float = 0


class QuestionIn(CamelModel):
    id: Optional[str] = None
    text: str = ""
    type: QuestionType
    options: List[OptionIn] = Field(default_factory=list)


class TestWrite(CamelModel):
    """Body of both create and edit: the desired end state of the test."""

    title: str
    description: Optional[str] = ""
    questions: List[QuestionIn] = Field(default_factory=list)
    assigned_groups: List[str] = Field(default_factory=list)

    @field_validator("title", mode="before")
    def strip_title(cls, value):
        return _strip(value)


class TestStatusUpdate(CamelModel):
    status: TestStatus


class OptionOut(CamelModel):
    id: str
    text: str
    score: float
    order: int


class OptionPublic(CamelModel):
    """Option as shown to a student: no score."""

    id: str
    text: str
    order: int


class QuestionOut(CamelModel):
    id: str
    text: str
    type: QuestionType
    order: int
    options: List[OptionOut] = Field(default_factory=list)


class QuestionPublic(CamelModel):
    id: str
    text: str
    type: QuestionType
    order: int
    options: List[OptionPublic] = Field(default_factory=list)


class StudentOut(CamelModel):
    id: str
    group_id: str
    first_name: str
    last_name: str
    middle_name: Optional[str] = None


class AssignmentOut(CamelModel):
    id: str
    test_id: str
    group_id: str
    student_id: Optional[str] = None
    status: AssignmentStatus
    unique_link: str
    created_at: datetime


class TestSummary(CamelModel):
    id: str
    title: str
    description: str
    status: TestStatus
    max_score: Optional[float] = None
    author_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    question_count: int = 0
    assignment_count: int = 0


class TestDetail(CamelModel):
    id: str
    title: str
    description: str
    status: TestStatus
    max_score: Optional[float] = None
    author_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    questions: List[QuestionOut] = Field(default_factory=list)
    assignments: List[AssignmentOut] = Field(default_factory=list)
    assigned_groups: List[str] = Field(default_factory=list)
    students: List[StudentOut] = Field(default_factory=list)


class AssignStudentsRequest(CamelModel):
    group_id: str
    student_ids: List[str] = Field(..., min_length=1)


class AssignStudentsResponse(CamelModel):
    students_assigned: int
    assignments: List[AssignmentOut]


class CompletionStatus(CamelModel):
    test_id: str
    status: TestStatus
    all_students_completed: bool
    completed_results: int
    total_assigned: int


class TakeTestView(CamelModel):
    """What a student sees when opening a test link."""

    link: str
    test_id: str
    title: str
    description: str
    questions: List[QuestionPublic]
    group_id: str
    students: List[StudentOut]


# --- results --------------------------------------------------------------

class ResponseIn(CamelModel):
    question_id: str
    selected_options: List[str] = Field(default_factory=list)


class SubmitResultRequest(CamelModel):
    test_id: str
    student_id: str
    responses: List[ResponseIn] = Field(default_factory=list)


class ResponseOut(CamelModel):
    id: str
    question_id: str
    selected_option: Optional[str] = None
    score: float


class ResultOut(CamelModel):
    id: str
    test_id: str
    student_id: str
    total_score: float
    completed_at: datetime
    responses: List[ResponseOut] = Field(default_factory=list)


class ResultRow(CamelModel):
    id: str
    test_id: str
    test_title: str
    student_id: str
    student: StudentOut
    total_score: float
    completed_at: datetime
    category: Optional[CategoryRef] = None


class ResultStats(CamelModel):
    total_students: int
    average_score: float
    highest_score: float
    lowest_score: float


class CategoryBucketOut(CamelModel):
    category_id: Optional[str] = None
    name: str
    min_score: Optional[float] = None
    max_score: Optional[float] = None
    count: int
    result_ids: List[str]


class ResultsListing(CamelModel):
    results: List[ResultRow]
    stats: ResultStats
    categories: List[CategoryBucketOut]


class ResponseDetail(ResponseOut):
    selected_options: List[str] = Field(default_factory=list)


class ResultDetail(ResultOut):
    responses: List[ResponseDetail] = Field(default_factory=list)
    test_title: str
    student: StudentOut
    category: Optional[CategoryRef] = None


# --- categories -----------------------------------------------------------

class CategoryWrite(CamelModel):
    name: str
    min_score: float
    max_score: float
    description: Optional[str] = None
    test_ids: List[str] = Field(default_factory=list)

    @field_validator("name", mode="before")
    def strip_name(cls, value):
        return _strip(value)


class CategoryOut(CamelModel):
    id: str
    name: str
    min_score: float
    max_score: float
    description: Optional[str] = None
    tests: List[TestRef] = Field(default_factory=list)


# --- groups and students --------------------------------------------------

class GroupWrite(CamelModel):
    name: str = Field(..., min_length=1)
    code: Optional[str] = Field(default=None, max_length=20)
    curator_id: Optional[str] = None

    @field_validator("name", "code", mode="before")
    def strip_text(cls, value):
        return _strip(value)


class GroupOut(CamelModel):
    id: str
    code: str
    name: str
    curator: Optional[UserRef] = None
    student_count: int = 0


class GroupDetail(GroupOut):
    students: List[StudentOut] = Field(default_factory=list)


class StudentWrite(CamelModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    middle_name: Optional[str] = None

    @field_validator("first_name", "last_name", "middle_name", mode="before")
    def strip_names(cls, value):
        return _strip(value)


class StudentsBulkWrite(CamelModel):
    students: List[StudentWrite] = Field(..., min_length=1)


class StudentTestStatus(CamelModel):
    test_id: str
    status: AssignmentStatus
    result_id: Optional[str] = None
    total_score: Optional[float] = None


class StudentStatusRow(CamelModel):
    student: StudentOut
    tests: List[StudentTestStatus]


class GroupTestStatuses(CamelModel):
    group_id: str
    tests: List[TestRef]
    students: List[StudentStatusRow]


# --- users ----------------------------------------------------------------

class UserCreate(CamelModel):
    name: str = Field(..., min_length=2)
    login: str = Field(..., min_length=3)
    password: Optional[str] = Field(default=None, min_length=6)
    role: UserRole = UserRole.CURATOR
    email: Optional[str] = None


class UserUpdate(CamelModel):
    name: str = Field(..., min_length=2)
    login: str = Field(..., min_length=3)
    role: UserRole
    email: Optional[str] = None
    group_ids: Optional[List[str]] = None


class PasswordReset(CamelModel):
    password: str = Field(..., min_length=6)


class UserOut(CamelModel):
    id: str
    name: str
    login: str
    email: Optional[str] = None
    role: UserRole
    created_at: datetime
    groups: List[GroupRef] = Field(default_factory=list)


class UserCreated(CamelModel):
    user: UserOut
    temporary_password: Optional[str] = None


# --- dashboard ------------------------------------------------------------

class DailyCount(CamelModel):
    day: date
    count: int


class DashboardStats(CamelModel):
    users_by_role: Dict[str, int]
    tests_by_status: Dict[str, int]
    groups: int
    students: int
    results: int
    results_last_week: List[DailyCount]
