"""
事件总线

引擎向表现层发出的通知。处理器可以是同步或异步函数，
处理器自身的异常只记录日志，不会影响安装流程。
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional

from loguru import logger


class EventType(Enum):
    """事件类型定义"""

    STATE_CHANGED = auto()  # 运行状态变化
    PROFILE_READY = auto()  # InstallerProfile 已就绪
    PROGRESS = auto()  # 单项状态更新
    NO_LAUNCHER = auto()  # 未找到启动器，等待用户选择
    ERROR = auto()  # 致命错误
    DONE = auto()  # 运行完成
    CANCELLED = auto()  # 运行被取消


@dataclass
class Event:
    """事件"""

    type: EventType
    source: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


Handler = Callable[[Event], Any]


class EventBus:
    """事件总线"""

    def __init__(self):
        self._handlers: Dict[EventType, List[Handler]] = {t: [] for t in EventType}
        self.history: List[Event] = []
        self.keep_history = False

    def subscribe(self, event_type: EventType, handler: Handler) -> None:
        """注册事件处理器"""
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: EventType, handler: Handler) -> None:
        if handler in self._handlers[event_type]:
            self._handlers[event_type].remove(handler)

    async def emit(self, event: Event) -> None:
        """
        分发事件

        处理器按注册顺序执行。
        """
        if self.keep_history:
            self.history.append(event)

        for handler in list(self._handlers[event.type]):
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(event)
                else:
                    result = handler(event)
                    if inspect.isawaitable(result):
                        await result
            except Exception as e:
                logger.error(f"事件 {event.type.name} 处理失败: {e}")
