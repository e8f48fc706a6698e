"""In-memory task store keyed by task id."""

from __future__ import annotations

from typing import Dict, List, Optional

from chatstream.tasks.models import Task, TaskStatus
from exceptions import TaskNotFoundError


class TaskRegistry:
    """Owns task records. Insertion order is preserved."""

    def __init__(self):
        self._tasks: Dict[str, Task] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._tasks

    def add(self, task: Task) -> Task:
        self._tasks[task.id] = task
        return task

    def get(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def require(self, task_id: str) -> Task:
        """Return the task or raise ``TaskNotFoundError``."""
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def all(self) -> List[Task]:
        return list(self._tasks.values())

    def active(self) -> List[Task]:
        return [task for task in self._tasks.values() if task.is_active]

    def find_by_name(self, name: str) -> Optional[Task]:
        """Most recently added non-terminal task with this name."""
        for task in reversed(list(self._tasks.values())):
            if task.name == name and not task.is_terminal:
                return task
        return None

    def remove(self, task_id: str) -> Optional[Task]:
        return self._tasks.pop(task_id, None)

    def counts(self) -> Dict[str, int]:
        """Number of tasks per status."""
        result = {status.value: 0 for status in TaskStatus}
        for task in self._tasks.values():
            result[task.status.value] += 1
        return result
