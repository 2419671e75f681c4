"""
下载任务队列

实现优先级队列、任务去重、队列状态监控。
"""

import asyncio
import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modsync.download.items import Downloadable


class Priority(Enum):
    """下载优先级"""

    HIGH = 0
    NORMAL = 1
    LOW = 2


_counter = itertools.count()


@dataclass(order=True)
class DownloadTask:
    """下载任务"""

    priority: int
    order: int
    item: "Downloadable" = field(compare=False)

    @classmethod
    def create(cls, item: "Downloadable", priority: Priority) -> "DownloadTask":
        return cls(priority=priority.value, order=next(_counter), item=item)


class DownloadQueue:
    """下载队列"""

    def __init__(self):
        self._queue: asyncio.PriorityQueue = asyncio.PriorityQueue()
        self._keys: set[str] = set()  # 用于去重
        self._total_queued = 0

    async def put(self, item: "Downloadable", priority: Priority = Priority.NORMAL) -> bool:
        """
        添加任务到队列

        Returns:
            True 如果任务是新添加的，False 如果是重复任务
        """
        if item.key in self._keys:
            return False

        self._keys.add(item.key)
        await self._queue.put(DownloadTask.create(item, priority))
        self._total_queued += 1
        return True

    async def get(self) -> DownloadTask:
        """获取下一个任务"""
        return await self._queue.get()

    def task_done(self):
        """标记任务完成"""
        self._queue.task_done()

    def qsize(self) -> int:
        """获取队列大小"""
        return self._queue.qsize()

    async def join(self):
        """等待所有任务完成"""
        await self._queue.join()

    def get_stats(self) -> dict:
        """获取队列统计"""
        return {
            "pending": self.qsize(),
            "total_queued": self._total_queued,
        }
