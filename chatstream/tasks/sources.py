"""
Recognized task-bearing stream payloads.

Each payload shape is parsed into one tagged variant, and every variant knows
how to express itself as ``TaskEvent`` records. Parsing is pure: no registry
access and no side effects beyond debug logging.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from chatstream.tasks.models import TaskEvent, TaskProgressUpdate, TaskResult, TaskStatus, TaskType

logger = logging.getLogger(__name__)

_PROGRESS_LINE_RE = re.compile(r"\[([^\]]+)\]\s+(.+?)(?:\s+\((\d+)/(\d+)\))?$")
_TOOL_CALLS_RE = re.compile(r"tool_calls=\[([^\]]+)\]")
_TOOL_NAME_RE = re.compile(r"'name':\s*'([^']+)'")

_STATUS_ALIASES = {
    "in_progress": TaskStatus.RUNNING,
    "processing": TaskStatus.RUNNING,
    "started": TaskStatus.STARTING,
    "success": TaskStatus.COMPLETED,
    "succeeded": TaskStatus.COMPLETED,
    "done": TaskStatus.COMPLETED,
    "error": TaskStatus.FAILED,
    "canceled": TaskStatus.CANCELLED,
}


def coerce_status(value: Any) -> Optional[TaskStatus]:
    if not isinstance(value, str):
        return None
    key = value.strip().lower()
    try:
        return TaskStatus(key)
    except ValueError:
        return _STATUS_ALIASES.get(key)


def _status_from_action(action: str) -> TaskStatus:
    lowered = action.lower()
    if "starting" in lowered:
        return TaskStatus.STARTING
    if "completed" in lowered:
        return TaskStatus.COMPLETED
    if "failed" in lowered:
        return TaskStatus.FAILED
    return TaskStatus.RUNNING


class ProgressLine(BaseModel):
    """``"[tool] Action (i/n)"`` text from a custom stream."""

    kind: Literal["progress_line"] = "progress_line"
    tool: str
    action: str
    current_step: Optional[int] = None
    total_steps: Optional[int] = None
    line: str

    def task_events(self) -> List[TaskEvent]:
        current = self.current_step or 1
        total = self.total_steps or 1
        percentage = (current / total) * 100 if self.current_step and self.total_steps else 0.0
        return [TaskEvent(
            task_name=self.tool,
            task_type=TaskType.TOOL_EXECUTION,
            status=_status_from_action(self.action),
            progress=TaskProgressUpdate(
                current_step=current,
                total_steps=total,
                percentage=percentage,
                current_step_name=self.action,
                details=self.line,
            ),
        )]


class TaskStatusUpdate(BaseModel):
    kind: Literal["task_status"] = "task_status"
    task_id: Optional[str] = None
    task_name: Optional[str] = None
    status: Optional[TaskStatus] = None
    progress: Optional[TaskProgressUpdate] = None
    result: Optional[TaskResult] = None
    error: Optional[str] = None

    def task_events(self) -> List[TaskEvent]:
        return [TaskEvent(
            task_id=self.task_id,
            task_name=self.task_name,
            status=self.status,
            progress=self.progress,
            result=self.result,
            error=self.error,
        )]


class TaskListUpdate(BaseModel):
    kind: Literal["task_list"] = "task_list"
    tasks: List[TaskStatusUpdate] = Field(default_factory=list)

    def task_events(self) -> List[TaskEvent]:
        events: List[TaskEvent] = []
        for item in self.tasks:
            events.extend(item.task_events())
        return events


class ToolCallMessage(BaseModel):
    """A model message announcing a tool call (``tool_calls=[{'name': ...}]``)."""

    kind: Literal["tool_call"] = "tool_call"
    tool: str

    def task_events(self) -> List[TaskEvent]:
        return [TaskEvent(
            task_name=self.tool,
            task_type=TaskType.TOOL_EXECUTION,
            status=TaskStatus.STARTING,
            progress=TaskProgressUpdate(
                current_step=1,
                total_steps=1,
                percentage=0.0,
                current_step_name=f"Preparing {self.tool}",
                details=f"Tool call: {self.tool}",
            ),
        )]


class BillingReport(BaseModel):
    kind: Literal["billing"] = "billing"
    success: bool = True
    model_calls: Optional[int] = None
    tool_calls: Optional[int] = None
    error_message: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    def task_events(self) -> List[TaskEvent]:
        return [TaskEvent(
            task_name="Billing",
            task_type=TaskType.CUSTOM,
            status=TaskStatus.COMPLETED if self.success else TaskStatus.FAILED,
            progress=TaskProgressUpdate(
                current_step=1,
                total_steps=1,
                percentage=100.0,
                current_step_name="Billing complete",
                details=f"Model calls: {self.model_calls}, tool calls: {self.tool_calls}",
            ),
            result=TaskResult(success=self.success, data=self.data, error=self.error_message),
            error=None if self.success else (self.error_message or "Billing failed"),
        )]


TaskSourceVariant = Union[ProgressLine, TaskStatusUpdate, TaskListUpdate, ToolCallMessage, BillingReport]


def parse_progress_line(text: str) -> Optional[ProgressLine]:
    match = _PROGRESS_LINE_RE.search(text.strip())
    if match is None:
        return None
    tool, action, current, total = match.groups()
    return ProgressLine(
        tool=tool,
        action=action,
        current_step=int(current) if current else None,
        total_steps=int(total) if total else None,
        line=text,
    )


def _status_update(item: Dict[str, Any]) -> TaskStatusUpdate:
    progress = item.get("progress")
    result = item.get("result")
    return TaskStatusUpdate(
        task_id=item.get("task_id") or item.get("id"),
        task_name=item.get("task_name") or item.get("name") or item.get("title"),
        status=coerce_status(item.get("status")),
        progress=TaskProgressUpdate.model_validate(progress) if isinstance(progress, dict) else None,
        result=TaskResult.model_validate(result) if isinstance(result, dict) else None,
        error=item.get("error"),
    )


def _from_custom_stream(content: Dict[str, Any]) -> Optional[TaskSourceVariant]:
    content_type = content.get("type")
    if content_type == "task_status":
        return _status_update(content)
    if content_type == "task_list":
        items = content.get("tasks") or []
        return TaskListUpdate(tasks=[_status_update(item) for item in items if isinstance(item, dict)])
    data = content.get("data")
    if isinstance(data, str):
        return parse_progress_line(data)
    return None


def _from_message_stream(content: Dict[str, Any]) -> Optional[TaskSourceVariant]:
    raw_message = content.get("raw_message")
    if not isinstance(raw_message, str):
        return None
    calls = _TOOL_CALLS_RE.search(raw_message)
    if calls is None:
        return None
    name = _TOOL_NAME_RE.search(calls.group(1))
    if name is None:
        return None
    return ToolCallMessage(tool=name.group(1))


def _from_billing(data: Dict[str, Any]) -> BillingReport:
    return BillingReport(
        success=bool(data.get("success", True)),
        model_calls=data.get("model_calls"),
        tool_calls=data.get("tool_calls"),
        error_message=data.get("error_message"),
        data=data,
    )


def classify_task_source(payload: Dict[str, Any]) -> Optional[TaskSourceVariant]:
    """Recognize a ``task_update`` event payload (``{source, content}``)."""
    source = payload.get("source")
    content = payload.get("content")
    if not isinstance(content, dict):
        return None
    try:
        if source == "custom_stream":
            return _from_custom_stream(content)
        if source == "message_stream":
            return _from_message_stream(content)
        if source == "billing":
            return _from_billing(content)
    except (ValidationError, TypeError, ValueError) as exc:
        logger.debug("Unrecognized task payload", extra={"data": {"source": source, "error": str(exc)}})
    return None


def parse_task_source(payload: Dict[str, Any]) -> List[TaskEvent]:
    """Map a task-bearing payload to zero or more ``TaskEvent`` records."""
    variant = classify_task_source(payload)
    if variant is None:
        return []
    return variant.task_events()
