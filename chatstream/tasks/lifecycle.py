"""
Task lifecycle state machine.

All transitions go through ``TRANSITIONS``; anything not listed there is
rejected, logged, and leaves the task untouched. Event handling never raises.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from chatstream.tasks.models import (
    Task,
    TaskAction,
    TaskEvent,
    TaskPriority,
    TaskProgress,
    TaskProgressUpdate,
    TaskResult,
    TaskSource,
    TaskStatus,
    TaskType,
    TransitionOutcome,
    utc_now,
)
from chatstream.tasks.registry import TaskRegistry
from core.bus import EventBus, Topic
from logging_config import log_debug, log_warning

logger = logging.getLogger(__name__)

CANCELLED_BY_USER = "Task cancelled by user"

TRANSITIONS: Dict[TaskAction, Dict[TaskStatus, TaskStatus]] = {
    TaskAction.START: {TaskStatus.PENDING: TaskStatus.STARTING},
    TaskAction.PAUSE: {TaskStatus.RUNNING: TaskStatus.PAUSED},
    TaskAction.RESUME: {TaskStatus.PAUSED: TaskStatus.RESUMING},
    TaskAction.CANCEL: {
        TaskStatus.RUNNING: TaskStatus.CANCELLED,
        TaskStatus.STARTING: TaskStatus.CANCELLED,
        TaskStatus.PAUSED: TaskStatus.CANCELLED,
        TaskStatus.RESUMING: TaskStatus.CANCELLED,
    },
    TaskAction.COMPLETE: {
        TaskStatus.RUNNING: TaskStatus.COMPLETED,
        TaskStatus.STARTING: TaskStatus.COMPLETED,
    },
    TaskAction.FAIL: {
        TaskStatus.RUNNING: TaskStatus.FAILED,
        TaskStatus.STARTING: TaskStatus.FAILED,
    },
    TaskAction.RETRY: {
        TaskStatus.FAILED: TaskStatus.PENDING,
        TaskStatus.CANCELLED: TaskStatus.PENDING,
    },
    TaskAction.INTERRUPT: {
        TaskStatus.RUNNING: TaskStatus.INTERRUPTED,
        TaskStatus.STARTING: TaskStatus.INTERRUPTED,
        TaskStatus.PAUSED: TaskStatus.INTERRUPTED,
        TaskStatus.RESUMING: TaskStatus.INTERRUPTED,
    },
}

# Entered automatically when progress arrives.
AUTO_RUNNING_FROM = (TaskStatus.STARTING, TaskStatus.RESUMING)


def can_apply(task: Task, action: TaskAction) -> bool:
    return task.status in TRANSITIONS[action]


def allowed_actions(task: Task) -> List[TaskAction]:
    return [action for action in TaskAction if can_apply(task, action)]


def new_task_id() -> str:
    return f"task-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


class TaskLifecycle:
    """Applies user actions and stream task events to a ``TaskRegistry``."""

    def __init__(self, registry: TaskRegistry, bus: EventBus,
                 id_factory: Callable[[], str] = new_task_id):
        self.registry = registry
        self.bus = bus
        self.id_factory = id_factory

    # ------------------------------------------------------------------
    # creation
    # ------------------------------------------------------------------

    def create_task(self, name: str, task_type: TaskType = TaskType.CUSTOM,
                    metadata: Optional[Dict[str, Any]] = None,
                    priority: TaskPriority = TaskPriority.NORMAL,
                    source: TaskSource = TaskSource.USER,
                    task_id: Optional[str] = None) -> Task:
        task = Task(
            id=task_id or self.id_factory(),
            name=name,
            type=task_type,
            priority=priority,
            source=source,
            metadata=dict(metadata or {}),
        )
        self.registry.add(task)
        log_debug(logger, f"Task created: {name}", "TaskLifecycle",
                  {"task_id": task.id, "type": task.type.value, "source": source.value})
        self._changed(task)
        return task

    # ------------------------------------------------------------------
    # single-task actions
    # ------------------------------------------------------------------

    def start(self, task_id: str) -> TransitionOutcome:
        return self._apply_by_id(task_id, TaskAction.START)

    def pause(self, task_id: str) -> TransitionOutcome:
        return self._apply_by_id(task_id, TaskAction.PAUSE)

    def resume(self, task_id: str) -> TransitionOutcome:
        return self._apply_by_id(task_id, TaskAction.RESUME)

    def cancel(self, task_id: str, reason: Optional[str] = None) -> TransitionOutcome:
        return self._apply_by_id(task_id, TaskAction.CANCEL, reason=reason)

    def complete(self, task_id: str, result: Optional[TaskResult] = None) -> TransitionOutcome:
        return self._apply_by_id(task_id, TaskAction.COMPLETE, result=result)

    def fail(self, task_id: str, error: str) -> TransitionOutcome:
        return self._apply_by_id(task_id, TaskAction.FAIL, error=error)

    def retry(self, task_id: str) -> TransitionOutcome:
        return self._apply_by_id(task_id, TaskAction.RETRY)

    def interrupt(self, task_id: str, reason: Optional[str] = None) -> TransitionOutcome:
        return self._apply_by_id(task_id, TaskAction.INTERRUPT, reason=reason)

    def update_progress(self, task_id: str, progress: TaskProgressUpdate) -> TransitionOutcome:
        """Merge the set fields of ``progress`` into the task's progress.

        Progress on a starting or resuming task moves it to running. Progress
        on a pending or terminal task is rejected.
        """
        task = self.registry.get(task_id)
        if task is None:
            return self._not_found(task_id, "update_progress")
        if task.status == TaskStatus.PENDING or task.is_terminal:
            log_warning(logger, f"Progress rejected for task in status '{task.status.value}'",
                        "TaskLifecycle", {"task_id": task_id})
            return TransitionOutcome.REJECTED

        merged = task.progress.model_dump()
        merged.update(progress.model_dump(exclude_none=True))
        task.progress = TaskProgress(**merged)
        if task.status in AUTO_RUNNING_FROM:
            task.status = TaskStatus.RUNNING
        task.updated_at = utc_now()
        self._changed(task)
        return TransitionOutcome.APPLIED

    # ------------------------------------------------------------------
    # batch actions
    # ------------------------------------------------------------------

    def pause_all(self) -> List[str]:
        return self._apply_all(TaskAction.PAUSE)

    def resume_all(self) -> List[str]:
        return self._apply_all(TaskAction.RESUME)

    def cancel_all(self, reason: Optional[str] = None) -> List[str]:
        return self._apply_all(TaskAction.CANCEL, reason=reason)

    def interrupt_stream_tasks(self, reason: str) -> List[str]:
        """Interrupt every active task that the stream created."""
        affected = []
        for task in self.registry.active():
            if task.source == TaskSource.STREAM:
                if self._apply(task, TaskAction.INTERRUPT, reason=reason) == TransitionOutcome.APPLIED:
                    affected.append(task.id)
        return affected

    # ------------------------------------------------------------------
    # stream events
    # ------------------------------------------------------------------

    def handle_task_event(self, event: TaskEvent) -> TransitionOutcome:
        """Apply one normalized task event from the stream."""
        created = False
        if event.task_id:
            task = self.registry.get(event.task_id)
            if task is None:
                return self._not_found(event.task_id, "task_event")
        elif event.task_name:
            task = self.registry.find_by_name(event.task_name)
            if task is None:
                task = self.create_task(
                    event.task_name,
                    task_type=event.task_type or TaskType.TOOL_EXECUTION,
                    source=TaskSource.STREAM,
                )
                created = True
        else:
            log_debug(logger, "Task event without id or name ignored", "TaskLifecycle",
                      event.model_dump(mode="json", exclude_none=True))
            return TransitionOutcome.IGNORED

        outcomes: List[TransitionOutcome] = []
        result_consumed = False
        status = event.status

        if status is not None:
            if status == TaskStatus.STARTING:
                outcomes.append(self._ensure_started(task))
            elif status == TaskStatus.RUNNING:
                outcomes.append(self._advance_to_running(task))
            elif status == TaskStatus.PAUSED:
                self._advance_to_running(task)
                outcomes.append(self._apply(task, TaskAction.PAUSE))
            elif status == TaskStatus.RESUMING:
                outcomes.append(self._apply(task, TaskAction.RESUME))
            elif status == TaskStatus.COMPLETED:
                self._advance_to_running(task)
                result = event.result or TaskResult(success=True)
                outcomes.append(self._apply(task, TaskAction.COMPLETE, result=result))
                result_consumed = True
            elif status == TaskStatus.FAILED:
                self._advance_to_running(task)
                error = event.error or (event.result.error if event.result else None) or "Task failed"
                outcomes.append(self._apply(task, TaskAction.FAIL, error=error))
                result_consumed = True
            elif status == TaskStatus.CANCELLED:
                outcomes.append(self._apply(task, TaskAction.CANCEL, reason=event.error))
                result_consumed = True
            elif status == TaskStatus.INTERRUPTED:
                outcomes.append(self._apply(task, TaskAction.INTERRUPT, reason=event.error))
                result_consumed = True
            elif status == TaskStatus.PENDING and task.status in TRANSITIONS[TaskAction.RETRY]:
                outcomes.append(self._apply(task, TaskAction.RETRY))

        if event.progress is not None and not task.is_terminal:
            self._ensure_started(task)
            outcomes.append(self.update_progress(task.id, event.progress))

        if not result_consumed:
            if event.result is not None:
                self._advance_to_running(task)
                if event.result.success:
                    outcomes.append(self._apply(task, TaskAction.COMPLETE, result=event.result))
                else:
                    outcomes.append(self._apply(task, TaskAction.FAIL,
                                                error=event.result.error or "Task failed"))
            elif event.error:
                self._advance_to_running(task)
                outcomes.append(self._apply(task, TaskAction.FAIL, error=event.error))

        if TransitionOutcome.REJECTED in outcomes:
            return TransitionOutcome.REJECTED
        if outcomes or created:
            return TransitionOutcome.APPLIED
        return TransitionOutcome.IGNORED

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _ensure_started(self, task: Task) -> TransitionOutcome:
        if task.status == TaskStatus.PENDING:
            return self._apply(task, TaskAction.START)
        return TransitionOutcome.APPLIED if task.is_active else TransitionOutcome.REJECTED

    def _advance_to_running(self, task: Task) -> TransitionOutcome:
        """pending -> starting -> running, or resuming -> running."""
        self._ensure_started(task)
        if task.status in AUTO_RUNNING_FROM:
            task.status = TaskStatus.RUNNING
            task.updated_at = utc_now()
            self._changed(task)
        if task.status == TaskStatus.RUNNING:
            return TransitionOutcome.APPLIED
        log_warning(logger, f"Task cannot run from status '{task.status.value}'",
                    "TaskLifecycle", {"task_id": task.id})
        return TransitionOutcome.REJECTED

    def _apply_all(self, action: TaskAction, **kwargs: Any) -> List[str]:
        affected = []
        for task in self.registry.all():
            if can_apply(task, action):
                self._apply(task, action, **kwargs)
                affected.append(task.id)
        log_debug(logger, f"Batch {action.value} applied", "TaskLifecycle",
                  {"count": len(affected)})
        return affected

    def _apply_by_id(self, task_id: str, action: TaskAction, **kwargs: Any) -> TransitionOutcome:
        task = self.registry.get(task_id)
        if task is None:
            return self._not_found(task_id, action.value)
        return self._apply(task, action, **kwargs)

    def _apply(self, task: Task, action: TaskAction,
               reason: Optional[str] = None,
               result: Optional[TaskResult] = None,
               error: Optional[str] = None) -> TransitionOutcome:
        target = TRANSITIONS[action].get(task.status)
        if target is None:
            log_warning(logger, f"Illegal transition: {action.value} from '{task.status.value}'",
                        "TaskLifecycle", {"task_id": task.id, "action": action.value,
                                          "status": task.status.value})
            return TransitionOutcome.REJECTED

        now = utc_now()
        if action == TaskAction.START:
            task.started_at = now
        elif action == TaskAction.COMPLETE:
            task.result = result or TaskResult(success=True)
            task.progress.percentage = 100.0
        elif action == TaskAction.FAIL:
            task.result = TaskResult(success=False, error=error)
        elif action == TaskAction.CANCEL:
            task.result = TaskResult(success=False, error=reason or CANCELLED_BY_USER)
        elif action == TaskAction.INTERRUPT:
            task.result = TaskResult(success=False, error=reason or "Task interrupted")
        elif action == TaskAction.RETRY:
            task.result = None
            task.progress = TaskProgress()
            task.started_at = None
            task.completed_at = None

        previous = task.status
        task.status = target
        task.updated_at = now
        if task.is_terminal:
            task.completed_at = now

        log_debug(logger, f"Task {action.value}: {previous.value} -> {target.value}", "TaskLifecycle",
                  {"task_id": task.id})
        self._changed(task)
        return TransitionOutcome.APPLIED

    def _not_found(self, task_id: str, operation: str) -> TransitionOutcome:
        log_warning(logger, f"Unknown task id for {operation}", "TaskLifecycle", {"task_id": task_id})
        return TransitionOutcome.TASK_NOT_FOUND

    def _changed(self, task: Task) -> None:
        self.bus.emit(Topic.TASK_CHANGED, task)
