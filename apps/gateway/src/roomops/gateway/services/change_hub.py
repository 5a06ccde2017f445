"""ChangeHub -- 内存中的变更通知广播器

订阅按分区键组织（task:<id> / worker:<id> / date:<YYYY-MM-DD>），
每个订阅者持有一个 asyncio.Queue，发布的是提交后的完整快照（TaskChange）。

投递语义：
- 同一任务的变更在锁内提交后按顺序发布，单个订阅者收到的版本号递增
- 队列溢出的订阅者被关闭（收到 None 哨兵），由客户端重连并全量拉取分区，
  不做错过变更的重放
- 带筛选条件的订阅：任务离开筛选范围时仍投递一次，以便看板移除该任务
"""

import asyncio
from collections import defaultdict

import structlog
from roomops.core.models import TaskChange, TaskFilter

log = structlog.get_logger()


class Subscription:
    """单个订阅者"""

    def __init__(
        self,
        partition: str,
        task_filter: TaskFilter | None = None,
        queue_maxsize: int = 100,
    ) -> None:
        self.partition = partition
        self.task_filter = task_filter
        self.queue: asyncio.Queue[TaskChange | None] = asyncio.Queue(
            maxsize=queue_maxsize
        )
        self.closed = False
        # 曾经命中筛选条件的任务
        self._visible: set[str] = set()

    def wants(self, change: TaskChange) -> bool:
        """判断该订阅者是否需要这条变更"""
        if self.task_filter is None:
            return True
        task_id = change.task_id
        if self.task_filter.matches(change.snapshot):
            self._visible.add(task_id)
            return True
        if task_id in self._visible:
            self._visible.discard(task_id)
            return True
        return False

    def mark_visible(self, task_id: str) -> None:
        """全量拉取时登记已在视图中的任务"""
        self._visible.add(task_id)

    async def get(self) -> TaskChange | None:
        """等待下一条变更；返回 None 表示订阅已被关闭"""
        return await self.queue.get()

    def close(self) -> None:
        """关闭订阅：清空积压并放入哨兵"""
        if self.closed:
            return
        self.closed = True
        while not self.queue.empty():
            self.queue.get_nowait()
        self.queue.put_nowait(None)


class ChangeHub:
    """变更广播器 -- 基于 asyncio.Queue 的分区发布/订阅"""

    def __init__(self, queue_maxsize: int = 100) -> None:
        # partition -> set of Subscription
        self._subscribers: dict[str, set[Subscription]] = defaultdict(set)
        self._queue_maxsize = queue_maxsize

    async def subscribe(
        self,
        partition: str,
        task_filter: TaskFilter | None = None,
    ) -> Subscription:
        """订阅指定分区

        Args:
            partition: 分区键，见 roomops.core.models.change
            task_filter: 可选筛选条件（前台看板）

        Returns:
            Subscription 实例，新变更会被推送到其队列
        """
        subscription = Subscription(partition, task_filter, self._queue_maxsize)
        self._subscribers[partition].add(subscription)
        log.debug("change_subscriber_added", partition=partition)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        partition = subscription.partition
        subscribers = self._subscribers.get(partition)
        if subscribers is None:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscribers[partition]

    async def publish(self, change: TaskChange, partitions: list[str]) -> int:
        """向多个分区的订阅者发布一条变更

        同一订阅者不会因为出现在多个分区而重复收到。

        Returns:
            实际投递的订阅者数量
        """
        delivered = 0
        seen: set[int] = set()
        overflowed: list[Subscription] = []
        for partition in partitions:
            for subscription in list(self._subscribers.get(partition, ())):
                if id(subscription) in seen or subscription.closed:
                    continue
                seen.add(id(subscription))
                if not subscription.wants(change):
                    continue
                try:
                    subscription.queue.put_nowait(change)
                    delivered += 1
                except asyncio.QueueFull:
                    overflowed.append(subscription)

        # 关闭溢出的订阅者，客户端重连后全量拉取
        for subscription in overflowed:
            log.warning(
                "subscriber_overflow_closed",
                partition=subscription.partition,
                task_id=change.task_id,
                version=change.version,
            )
            subscription.close()
            await self.unsubscribe(subscription)
        return delivered

    def subscriber_count(self, partition: str | None = None) -> int:
        if partition is not None:
            return len(self._subscribers.get(partition, ()))
        return sum(len(s) for s in self._subscribers.values())
