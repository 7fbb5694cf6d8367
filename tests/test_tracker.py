"""
Tests for assignment completion predicates and the status rollup.
"""

from types import SimpleNamespace

from sqlalchemy.dialects import postgresql

from assessment_api import models
from assessment_api.tracker import assignment_complete, covered_students, lock_test, rollup_status


class TestCoveredStudents:
    """Tests for who an assignment is offered to."""

    def test_group_assignment_covers_whole_group(self):
        assignment = SimpleNamespace(group_id="g1", student_id=None)

        assert covered_students(assignment, {"g1": {"s1", "s2"}}) == {"s1", "s2"}

    def test_student_assignment_covers_one_student(self):
        assignment = SimpleNamespace(group_id="g1", student_id="s2")

        assert covered_students(assignment, {"g1": {"s1", "s2"}}) == {"s2"}


class TestAssignmentComplete:
    """Tests for deciding when an assignment is done."""

    def test_everyone_finished(self):
        assert assignment_complete({"s1", "s2"}, {"s1", "s2", "s3"})

    def test_someone_missing(self):
        assert not assignment_complete({"s1", "s2"}, {"s1"})

    def test_nobody_covered_is_never_complete(self):
        assert not assignment_complete(set(), {"s1"})


class TestRollupStatus:
    """Tests for rolling assignment state up into the test status."""

    def test_all_complete(self):
        assert rollup_status("ACTIVE", [True, True]) is models.TestStatus.COMPLETED

    def test_any_open_reverts_to_active(self):
        assert rollup_status("COMPLETED", [True, False]) is models.TestStatus.ACTIVE

    def test_draft_with_open_assignments_becomes_active(self):
        assert rollup_status("DRAFT", [False]) is models.TestStatus.ACTIVE

    def test_no_assignments_keeps_status(self):
        assert rollup_status("DRAFT", []) is models.TestStatus.DRAFT


class TestLockTest:
    """Tests for the row lock taken before the rollup."""

    def test_selects_the_test_for_update(self):
        """Two final submissions recompute one after the other, so the second sees the first."""
        sql = str(lock_test("t1").compile(dialect=postgresql.dialect()))

        assert "FROM tests" in sql
        assert sql.rstrip().endswith("FOR UPDATE")
