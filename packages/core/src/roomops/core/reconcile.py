"""SnapshotReconciler -- 订阅方的快照合并规则

投递是 at-least-once 且不同任务之间无序：
只应用 version 严格大于已应用版本的快照，重复或过期的快照直接丢弃。
断线重连后用分区全量拉取（load）重新对齐，而不是重放错过的通知。
"""

from collections.abc import Iterable

from .models.change import TaskChange, TaskFilter
from .models.task import Task


class SnapshotReconciler:
    """按 task_id 维护最新快照"""

    def __init__(self, task_filter: TaskFilter | None = None) -> None:
        self._tasks: dict[str, Task] = {}
        self._filter = task_filter

    def apply(self, change: TaskChange) -> bool:
        """应用一条变更

        Returns:
            True 如果快照被采纳；False 表示重复或过期
        """
        return self.apply_snapshot(change.snapshot)

    def apply_snapshot(self, snapshot: Task) -> bool:
        current = self._tasks.get(snapshot.task_id)
        if current is not None and snapshot.version <= current.version:
            return False
        self._tasks[snapshot.task_id] = snapshot
        return True

    def load(self, snapshots: Iterable[Task]) -> None:
        """全量拉取结果合并（同样遵守版本单调规则）"""
        for snapshot in snapshots:
            self.apply_snapshot(snapshot)

    def version_of(self, task_id: str) -> int:
        current = self._tasks.get(task_id)
        return current.version if current is not None else 0

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def tasks(self) -> list[Task]:
        """当前视图（应用筛选条件，按创建时间排序）"""
        visible = [
            t
            for t in self._tasks.values()
            if self._filter is None or self._filter.matches(t)
        ]
        return sorted(visible, key=lambda t: (t.created_at, t.task_id))
