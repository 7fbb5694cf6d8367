import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Table, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from assessment_api.database import Base


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    CURATOR = "CURATOR"


class TestStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class QuestionType(str, enum.Enum):
    SINGLE_CHOICE = "SINGLE_CHOICE"
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    TEXT = "TEXT"


class AssignmentStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


category_tests = Table(
    "student_category_tests",
    Base.metadata,
    Column("category_id", String(36), ForeignKey("student_categories.id", ondelete="CASCADE"), primary_key=True),
    Column("test_id", String(36), ForeignKey("tests.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    login = Column(String(100), unique=True, nullable=False)
    email = Column(String(200), nullable=True)
    password_hash = Column(String(100), nullable=False)
    role = Column(String(10), nullable=False, default=UserRole.CURATOR.value)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    groups = relationship("Group", back_populates="curator")


class Group(Base):
    __tablename__ = "groups"

    id = Column(String(36), primary_key=True, default=new_id)
    code = Column(String(20), unique=True, nullable=False)
    name = Column(String(200), nullable=False)
    curator_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    curator = relationship("User", back_populates="groups")
    students = relationship("Student", back_populates="group", order_by="Student.last_name")
    assignments = relationship("TestAssignment", back_populates="group")


class Student(Base):
    __tablename__ = "students"

    id = Column(String(36), primary_key=True, default=new_id)
    group_id = Column(String(36), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    middle_name = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    group = relationship("Group", back_populates="students")
    results = relationship("TestResult", back_populates="student")

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.last_name, self.first_name, self.middle_name) if part)


class Test(Base):
    __tablename__ = "tests"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(300), nullable=False)
    description = Column(Text, nullable=False, default="")
    status = Column(String(10), nullable=False, default=TestStatus.DRAFT.value)

    # Highest reachable total, derived from option scores on every save
    max_score = Column(Float, nullable=True)

    author_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    questions = relationship(
        "Question", back_populates="test", order_by="Question.order", cascade="all, delete-orphan"
    )
    assignments = relationship("TestAssignment", back_populates="test", cascade="all, delete-orphan")
    results = relationship("TestResult", back_populates="test", cascade="all, delete-orphan")
    categories = relationship("StudentCategory", secondary=category_tests, back_populates="tests")


class Question(Base):
    __tablename__ = "questions"

    id = Column(String(36), primary_key=True, default=new_id)
    test_id = Column(String(36), ForeignKey("tests.id", ondelete="CASCADE"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    type = Column(String(20), nullable=False)
    order = Column(Integer, nullable=False, default=0)

    test = relationship("Test", back_populates="questions")
    options = relationship(
        "Option", back_populates="question", order_by="Option.order", cascade="all, delete-orphan"
    )


class Option(Base):
    __tablename__ = "options"

    id = Column(String(36), primary_key=True, default=new_id)
    question_id = Column(String(36), ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True)
    text = Column(Text, nullable=False)

    # Signed weight added to the total when the option is selected
    score = Column(Float, nullable=False, default=0)
    order = Column(Integer, nullable=False, default=0)

    question = relationship("Question", back_populates="options")


class StudentCategory(Base):
    __tablename__ = "student_categories"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    min_score = Column(Float, nullable=False)
    max_score = Column(Float, nullable=False)
    description = Column(Text, nullable=True)

    tests = relationship("Test", secondary=category_tests, back_populates="categories")


class TestAssignment(Base):
    __tablename__ = "test_assignments"

    id = Column(String(36), primary_key=True, default=new_id)
    test_id = Column(String(36), ForeignKey("tests.id", ondelete="CASCADE"), nullable=False, index=True)
    group_id = Column(String(36), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)

    # Null for a group-wide assignment
    student_id = Column(String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=True)
    status = Column(String(10), nullable=False, default=AssignmentStatus.ACTIVE.value)
    unique_link = Column(String(64), unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    test = relationship("Test", back_populates="assignments")
    group = relationship("Group", back_populates="assignments")
    student = relationship("Student")


class TestResult(Base):
    __tablename__ = "test_results"
    __table_args__ = (UniqueConstraint("test_id", "student_id", name="uq_test_results_test_student"),)

    id = Column(String(36), primary_key=True, default=new_id)
    test_id = Column(String(36), ForeignKey("tests.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    total_score = Column(Float, nullable=False, default=0)
    completed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    test = relationship("Test", back_populates="results")
    student = relationship("Student", back_populates="results")
    responses = relationship("TestResponse", back_populates="test_result", cascade="all, delete-orphan")


class TestResponse(Base):
    __tablename__ = "test_responses"

    id = Column(String(36), primary_key=True, default=new_id)
    test_result_id = Column(String(36), ForeignKey("test_results.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(String(36), ForeignKey("questions.id", ondelete="CASCADE"), nullable=False)

    # Option id, comma-joined option ids, or raw text depending on question type
    selected_option = Column(Text, nullable=True)
    score = Column(Float, nullable=False, default=0)

    test_result = relationship("TestResult", back_populates="responses")
    question = relationship("Question")
