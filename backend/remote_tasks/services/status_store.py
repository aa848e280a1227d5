from typing import Dict, List, Optional

from remote_tasks.models import TaskInfo


class StatusStore:
    """
    In-memory task id -> TaskInfo mapping.

    Lives as long as the process. Reads hand out copies so callers cannot
    mutate the tracked record behind the monitor's back.
    """

    def __init__(self):
        self._tasks: Dict[str, TaskInfo] = {}

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def get(self, task_id: str) -> Optional[TaskInfo]:
        """Return the live record (internal use)."""
        return self._tasks.get(task_id)

    def snapshot(self, task_id: str) -> Optional[TaskInfo]:
        info = self._tasks.get(task_id)
        return info.model_copy() if info is not None else None

    def snapshot_all(self) -> List[TaskInfo]:
        return [info.model_copy() for info in self._tasks.values()]

    def put(self, info: TaskInfo) -> None:
        self._tasks[info.task_id] = info

    def remove(self, task_id: str) -> Optional[TaskInfo]:
        return self._tasks.pop(task_id, None)

    def clear(self) -> None:
        self._tasks.clear()
