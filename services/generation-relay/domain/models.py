from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class TaskStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self not in (TaskStatus.QUEUED, TaskStatus.RUNNING)


# Error codes the relay assigns itself (provider codes pass through as-is)
MISSING_RESULT = "missing-result"
UNRECOGNIZED_STATUS = "unrecognized-status"
SUBMIT_TIMEOUT = "submit-timeout"


# Standard Error Struct
class ErrorDetails(BaseModel):
    code: str
    message: str
    suggestion: Optional[str] = None
    trace_id: Optional[str] = None


# Domain Models
class GenerationRequest(BaseModel):
    """
    One photo headed for a provider: either raw bytes with their MIME type,
    or an http(s) URL the provider downloads itself.
    """

    model_config = ConfigDict(frozen=True)

    image: Optional[bytes] = Field(default=None, repr=False)
    mime_type: Optional[str] = None
    source_url: Optional[str] = None
    model_version: Optional[str] = None

    @property
    def size_bytes(self) -> int:
        return len(self.image) if self.image else 0

    @property
    def extension(self) -> str:
        """File extension the providers expect for the declared type."""
        subtype = (self.mime_type or "").split("/")[-1]
        return "jpg" if subtype == "jpeg" else subtype


class TaskHandle(BaseModel):
    task_id: str
    provider: str
    trace_id: Optional[str] = None


class TaskSnapshot(BaseModel):
    task_id: str
    status: TaskStatus
    progress: Optional[int] = None
    result_url: Optional[str] = None
    error: Optional[ErrorDetails] = None

    # The vendor's own status string, kept for logs and debugging
    raw_status: Optional[str] = None
    # False when the vendor sent a status outside its documented set
    recognized: bool = True
    trace_id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def succeeded(self) -> bool:
        return self.status is TaskStatus.SUCCEEDED


def clamp_progress(value: Any) -> Optional[int]:
    try:
        return max(0, min(100, int(value)))
    except (TypeError, ValueError):
        return None


_STATUS_RANK = {TaskStatus.QUEUED: 0, TaskStatus.RUNNING: 1}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class GenerationTask:
    """
    The relay's view of one provider job for the length of one await.
    Status only moves forward: queued -> running -> terminal.
    """

    task_id: str
    status: TaskStatus = TaskStatus.QUEUED
    result_url: Optional[str] = None
    error: Optional[ErrorDetails] = None
    progress: Optional[int] = None
    created_at: datetime = field(default_factory=_utcnow)
    last_polled_at: Optional[datetime] = None
    last_snapshot: Optional[TaskSnapshot] = field(default=None, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def observe(self, snapshot: TaskSnapshot) -> TaskSnapshot:
        """
        Folds a fresh poll result into the task and returns the snapshot the
        caller should see. Terminal tasks ignore later observations.
        """
        self.last_polled_at = _utcnow()

        if self.is_terminal and self.last_snapshot is not None:
            return self.last_snapshot

        if not snapshot.status.is_terminal and _STATUS_RANK[snapshot.status] < _STATUS_RANK.get(
            self.status, 0
        ):
            # Provider briefly reported an earlier state; keep ours
            snapshot = snapshot.model_copy(update={"status": self.status})

        self.status = snapshot.status
        self.progress = snapshot.progress if snapshot.progress is not None else self.progress
        self.result_url = snapshot.result_url if snapshot.succeeded else None
        self.error = snapshot.error if snapshot.is_terminal and not snapshot.succeeded else None
        self.last_snapshot = snapshot
        return snapshot

    def processing_snapshot(self) -> TaskSnapshot:
        """Resumable 'still running' result handed back when the budget runs out."""
        base = self.last_snapshot
        return TaskSnapshot(
            task_id=self.task_id,
            status=self.status,
            progress=self.progress,
            raw_status=base.raw_status if base else None,
            recognized=base.recognized if base else True,
            trace_id=base.trace_id if base else None,
        )


# Peripheral models


class Product(BaseModel):
    id: str
    title: str
    image: str
    price: str


class SizingRequest(BaseModel):
    height: float = Field(..., gt=0, le=300)  # cm
    weight: float = Field(..., gt=0, le=500)  # kg


class SizingResult(BaseModel):
    size: Literal["S", "M", "L", "XL"]
    height: float
    weight: float


class ChatTurn(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1)
    context: List[ChatTurn] = Field(default_factory=list)


# HTTP request bodies


class GenerateModelBody(BaseModel):
    """Either a new image to convert, or the taskId of a job to resume."""

    image: Optional[str] = Field(default=None, validation_alias=AliasChoices("image", "image_url", "imageUrl"))
    mime_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("mimeType", "mime_type"))
    task_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("taskId", "task_id"))
    model_version: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("modelVersion", "model_version")
    )
