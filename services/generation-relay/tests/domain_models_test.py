from domain.models import ErrorDetails, GenerationTask, TaskSnapshot, TaskStatus


def snap(status: TaskStatus, **kwargs) -> TaskSnapshot:
    return TaskSnapshot(task_id="task-1", status=status, **kwargs)


def test_terminal_statuses():
    assert not TaskStatus.QUEUED.is_terminal
    assert not TaskStatus.RUNNING.is_terminal
    assert all(
        s.is_terminal
        for s in (TaskStatus.SUCCEEDED, TaskStatus.FAILED, TaskStatus.CANCELLED, TaskStatus.EXPIRED, TaskStatus.UNKNOWN)
    )


def test_task_moves_forward():
    task = GenerationTask(task_id="task-1")
    assert task.status is TaskStatus.QUEUED
    assert task.last_polled_at is None

    task.observe(snap(TaskStatus.RUNNING, progress=10))
    assert task.status is TaskStatus.RUNNING
    assert task.last_polled_at is not None

    task.observe(snap(TaskStatus.SUCCEEDED, result_url="https://x/m.glb", progress=100))
    assert task.status is TaskStatus.SUCCEEDED
    assert task.result_url == "https://x/m.glb"
    assert task.error is None


def test_terminal_task_ignores_later_observations():
    task = GenerationTask(task_id="task-1")
    first = task.observe(snap(TaskStatus.SUCCEEDED, result_url="https://x/m.glb"))

    again = task.observe(snap(TaskStatus.FAILED, error=ErrorDetails(code="failed", message="late")))

    assert again == first
    assert task.status is TaskStatus.SUCCEEDED
    assert task.result_url == "https://x/m.glb"


def test_running_task_does_not_fall_back_to_queued():
    task = GenerationTask(task_id="task-1")
    task.observe(snap(TaskStatus.RUNNING, progress=40))

    seen = task.observe(snap(TaskStatus.QUEUED))

    assert seen.status is TaskStatus.RUNNING
    assert task.progress == 40


def test_failed_task_keeps_error_and_no_url():
    task = GenerationTask(task_id="task-1")
    task.observe(snap(TaskStatus.FAILED, error=ErrorDetails(code="banned", message="Tripo task failed: banned")))

    assert task.result_url is None
    assert task.error.code == "banned"


def test_processing_snapshot_is_resumable():
    task = GenerationTask(task_id="task-1")
    task.observe(snap(TaskStatus.RUNNING, progress=70, trace_id="tr-1"))

    processing = task.processing_snapshot()

    assert processing.task_id == "task-1"
    assert not processing.is_terminal
    assert processing.progress == 70
    assert processing.trace_id == "tr-1"
    assert processing.result_url is None
