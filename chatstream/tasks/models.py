"""Task records tracked by the task lifecycle state machine."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class TaskStatus(str, Enum):
    """Lifecycle states of a task."""

    PENDING = "pending"
    STARTING = "starting"
    RUNNING = "running"
    PAUSED = "paused"
    RESUMING = "resuming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    INTERRUPTED = "interrupted"


ACTIVE_TASK_STATUSES = frozenset({
    TaskStatus.STARTING,
    TaskStatus.RUNNING,
    TaskStatus.PAUSED,
    TaskStatus.RESUMING,
})

TERMINAL_TASK_STATUSES = frozenset({
    TaskStatus.COMPLETED,
    TaskStatus.FAILED,
    TaskStatus.CANCELLED,
    TaskStatus.INTERRUPTED,
})


class TaskType(str, Enum):
    CHAT_RESPONSE = "chat_response"
    TOOL_EXECUTION = "tool_execution"
    PLAN_EXECUTION = "plan_execution"
    IMAGE_GENERATION = "image_generation"
    WEB_SEARCH = "web_search"
    DATA_ANALYSIS = "data_analysis"
    CONTENT_CREATION = "content_creation"
    CUSTOM = "custom"


class TaskPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class TaskAction(str, Enum):
    """Actions that drive explicit transitions."""

    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    CANCEL = "cancel"
    COMPLETE = "complete"
    FAIL = "fail"
    RETRY = "retry"
    INTERRUPT = "interrupt"


class TaskSource(str, Enum):
    """Who created the task."""

    USER = "user"
    STREAM = "stream"


class TaskProgress(BaseModel):
    current_step: int = 0
    total_steps: int = 1
    percentage: float = 0.0
    current_step_name: str = "Preparing..."
    details: Optional[str] = None


class TaskProgressUpdate(BaseModel):
    """Partial progress; only the fields that are set are merged."""

    current_step: Optional[int] = None
    total_steps: Optional[int] = None
    percentage: Optional[float] = None
    current_step_name: Optional[str] = None
    details: Optional[str] = None


class TaskResult(BaseModel):
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    artifacts: List[str] = Field(default_factory=list)


class Task(BaseModel):
    """A long-running unit of backend work."""

    id: str
    name: str
    type: TaskType = TaskType.CUSTOM
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.NORMAL
    progress: TaskProgress = Field(default_factory=TaskProgress)
    result: Optional[TaskResult] = None
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    source: TaskSource = TaskSource.USER
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_TASK_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES


class TaskEvent(BaseModel):
    """Normalized task-bearing payload from the stream."""

    task_id: Optional[str] = None
    task_name: Optional[str] = None
    task_type: Optional[TaskType] = None
    status: Optional[TaskStatus] = None
    progress: Optional[TaskProgressUpdate] = None
    result: Optional[TaskResult] = None
    error: Optional[str] = None


class TransitionOutcome(str, Enum):
    """Result of applying an action or task event."""

    APPLIED = "applied"
    REJECTED = "rejected"
    TASK_NOT_FOUND = "task_not_found"
    IGNORED = "ignored"
