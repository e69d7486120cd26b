from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    # Declared for workers that may report failures; nothing assigns it yet
    FAILED = "failed"


class TrackingStatus(str, Enum):
    NOT_FOUND = "not_found"
    WAITING = "waiting"
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Task(BaseModel):
    """A job that was handed to a worker machine."""

    prompt_id: str
    tracking_id: str
    machine: str
    status: TaskStatus = TaskStatus.PENDING
    image_path: str
    audio_path: str
    generated_video_path: str = ""
    prompt: str
    audio_length_bytes: Optional[int] = None
    audio_duration_seconds: Optional[float] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    time_to_complete_ms: Optional[int] = None


class WaitingTaskInput(BaseModel):
    id: Optional[str] = None
    image_url: str
    audio_url: str
    prompt: str
    audio_duration_seconds: Optional[float] = None


class WaitingTask(BaseModel):
    """A job deferred until a worker frees up; holds blob references only."""

    id: str
    image_url: str
    audio_url: str
    prompt: str
    audio_duration_seconds: Optional[float] = None


class CompletedTaskView(BaseModel):
    tracking_id: str
    machine: str
    prompt: str
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    audio_length_seconds: Optional[float] = None
    audio_length_formatted: Optional[str] = None
    processing_time_ms: Optional[int] = None
    processing_time_formatted: Optional[str] = None


class SubmissionReceipt(BaseModel):
    tracking_id: str
    status: str = Field(description="processing or waiting_for_free_machine")
