"""Unit tests for completion bookkeeping on task records."""

from datetime import datetime, timedelta, timezone

from lipsync_dispatch.queue.task_models import Task, TaskStatus
from lipsync_dispatch.queue.task_store import apply_completion

CREATED = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _task(**overrides) -> Task:
    values = dict(
        prompt_id="prompt-1",
        tracking_id="track-1",
        machine="http://worker-a:8188",
        image_path="face.png",
        audio_path="voice.wav",
        prompt="a person talking",
        created_at=CREATED,
    )
    values.update(overrides)
    return Task(**values)


def test_new_task_defaults():
    task = _task()

    assert task.status == TaskStatus.PENDING
    assert task.generated_video_path == ""
    assert task.completed_at is None
    assert task.time_to_complete_ms is None


def test_apply_completion_sets_timestamp_and_duration():
    task = _task()

    apply_completion(task, CREATED + timedelta(seconds=90, milliseconds=250))

    assert task.status == TaskStatus.COMPLETED
    assert task.completed_at == CREATED + timedelta(seconds=90, milliseconds=250)
    assert task.time_to_complete_ms == 90_250


def test_apply_completion_keeps_existing_timestamp_and_duration():
    first = CREATED + timedelta(seconds=10)
    task = _task(completed_at=first, time_to_complete_ms=10_000)

    apply_completion(task, CREATED + timedelta(seconds=50))

    assert task.completed_at == first
    assert task.time_to_complete_ms == 10_000


def test_apply_completion_discards_negative_duration():
    task = _task()

    apply_completion(task, CREATED - timedelta(seconds=5))

    assert task.status == TaskStatus.COMPLETED
    assert task.time_to_complete_ms is None


def test_apply_completion_without_created_at():
    task = _task(created_at=None)

    apply_completion(task, CREATED)

    assert task.completed_at == CREATED
    assert task.time_to_complete_ms is None


def test_apply_completion_handles_naive_timestamps():
    task = _task(created_at=datetime(2025, 1, 1, 12, 0, 0))

    apply_completion(task, CREATED + timedelta(seconds=2))

    assert task.time_to_complete_ms == 2000


def test_task_round_trips_through_json():
    task = _task(audio_length_bytes=1024, audio_duration_seconds=3.5)

    restored = Task.model_validate_json(task.model_dump_json())

    assert restored == task
