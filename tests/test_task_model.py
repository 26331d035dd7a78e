# tests/test_task_model.py
"""
Test suite for the SyncTask model

Tests:
1. Lifecycle transitions and terminal states
2. Result recording and progress
3. Attempt summaries across retries
4. Serialization
"""

import re

import pytest

from content_sync.errors import InvalidTransitionError
from content_sync.models.task import (
    AffectedTarget,
    ResultStatus,
    SyncPriority,
    SyncTask,
    TargetKind,
    TargetResult,
    TaskStatus,
    generate_task_id,
)

from conftest import OWNER, make_change


def make_task(targets: int = 3) -> SyncTask:
    return SyncTask(
        content_id="content-1",
        owner_id=OWNER,
        change=make_change(),
        affected_targets=[AffectedTarget(f"page-{i}", f"Page {i}", TargetKind.DERIVED_PAGE) for i in range(targets)]
    )


# =============================================================================
# Test: Identity
# =============================================================================

class TestTaskIdentity:
    """Tests for task ids and defaults"""

    def test_generated_id_format(self):
        """Task ids look like sync-<epoch-ms>-<random>"""
        assert re.fullmatch(r"sync-\d{13}-[0-9a-f]{9}", generate_task_id())

    def test_ids_are_unique(self):
        assert len({generate_task_id() for _ in range(200)}) == 200

    def test_defaults(self):
        task = make_task()
        assert task.status == TaskStatus.PENDING
        assert task.progress == 0
        assert task.results == []
        assert task.schedule.priority == SyncPriority.MEDIUM
        assert task.schedule.retry_count == 0
        assert isinstance(task.affected_targets, tuple)

    def test_priority_rank(self):
        assert SyncPriority.HIGH.rank > SyncPriority.MEDIUM.rank > SyncPriority.LOW.rank


# =============================================================================
# Test: Transitions
# =============================================================================

class TestTaskTransitions:
    """Tests for the status state machine"""

    def test_happy_path(self):
        task = make_task()
        task.transition_to(TaskStatus.RUNNING)
        task.transition_to(TaskStatus.COMPLETED)
        assert task.is_terminal
        assert task.ended_at is not None

    def test_retry_returns_to_pending(self):
        task = make_task()
        task.transition_to(TaskStatus.RUNNING)
        task.transition_to(TaskStatus.PENDING, "retry scheduled")
        assert task.status == TaskStatus.PENDING
        assert task.ended_at is None

    def test_cancel_only_from_pending(self):
        task = make_task()
        task.transition_to(TaskStatus.RUNNING)
        assert not task.can_transition_to(TaskStatus.CANCELLED)
        with pytest.raises(InvalidTransitionError):
            task.transition_to(TaskStatus.CANCELLED)

    @pytest.mark.parametrize("terminal", [TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED])
    def test_terminal_states_are_final(self, terminal):
        """Nothing leaves a terminal state"""
        task = make_task()
        if terminal == TaskStatus.CANCELLED:
            task.transition_to(TaskStatus.CANCELLED)
        else:
            task.transition_to(TaskStatus.RUNNING)
            task.transition_to(terminal)

        for status in TaskStatus:
            assert not task.can_transition_to(status)

    def test_invalid_transition_error_context(self):
        task = make_task()
        with pytest.raises(InvalidTransitionError) as exc_info:
            task.transition_to(TaskStatus.FAILED)
        assert exc_info.value.error_code == "INVALID_TRANSITION"
        assert exc_info.value.context["from"] == "pending"
        assert exc_info.value.context["to"] == "failed"


# =============================================================================
# Test: Results & Progress
# =============================================================================

class TestTaskResults:
    """Tests for result recording"""

    def test_progress_counts_successes_only(self):
        task = make_task(targets=4)
        task.begin_attempt()
        task.record_result(TargetResult("page-0", ResultStatus.SUCCESS))
        task.record_result(TargetResult("page-1", ResultStatus.ERROR, error="boom"))
        task.record_result(TargetResult("page-2", ResultStatus.SKIPPED, detail="unchanged"))

        assert task.progress == 50
        assert task.success_count == 2
        assert task.error_count == 1

    def test_cannot_record_more_results_than_targets(self):
        task = make_task(targets=1)
        task.record_result(TargetResult("page-0", ResultStatus.SUCCESS))
        with pytest.raises(ValueError):
            task.record_result(TargetResult("page-0", ResultStatus.SUCCESS))

    def test_success_rate(self):
        task = make_task(targets=3)
        assert task.success_rate == 0
        task.record_result(TargetResult("page-0", ResultStatus.SUCCESS))
        task.record_result(TargetResult("page-1", ResultStatus.SUCCESS))
        task.record_result(TargetResult("page-2", ResultStatus.ERROR, error="boom"))
        assert task.success_rate == 67

    def test_begin_attempt_resets_current_results(self):
        task = make_task(targets=2)
        task.begin_attempt()
        task.record_result(TargetResult("page-0", ResultStatus.SUCCESS))
        task.record_result(TargetResult("page-1", ResultStatus.ERROR, error="boom"))
        summary = task.summarize_attempt()

        task.begin_attempt()

        assert task.results == []
        assert task.progress == 0
        assert summary.attempt == 1
        assert summary.errors == {"page-1": "boom"}
        assert len(task.attempts) == 1


# =============================================================================
# Test: Serialization
# =============================================================================

class TestTaskSerialization:

    def test_to_dict(self):
        task = make_task(targets=1)
        data = task.to_dict()

        assert data["id"] == task.id
        assert data["status"] == "pending"
        assert data["affected_targets"] == [{"id": "page-0", "display_name": "Page 0", "kind": "derived_page"}]
        assert data["change"]["kind"] == "update"
        assert data["schedule"]["strategy"] == "immediate"
        assert data["started_at"] is None
        assert data["execution_ms"] is None
