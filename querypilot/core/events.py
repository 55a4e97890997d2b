"""
事件系统实现
A small in-process event bus used for execution auditing
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class EventMetadata:
    """事件元数据"""
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=datetime.now)
    source: Optional[str] = None


@dataclass
class Event:
    """基础事件类"""
    data: Any
    metadata: EventMetadata = field(default_factory=EventMetadata)
    event_type: str = field(default="")

    def __post_init__(self):
        if not self.event_type:
            self.event_type = self.__class__.__name__


class InMemoryEventStore:
    """内存事件存储实现"""

    def __init__(self, max_size: int = 1000):
        self._events: List[Event] = []
        self._max_size = max_size

    def save_event(self, event: Event) -> None:
        self._events.append(event)
        if len(self._events) > self._max_size:
            self._events = self._events[-self._max_size:]

    def get_events(self, event_type: Optional[str] = None, limit: int = 100) -> List[Event]:
        events = self._events
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        return events[-limit:]


class EventBus:
    """事件总线"""

    def __init__(self, event_store: Optional[InMemoryEventStore] = None):
        self._handlers: Dict[str, List[Callable]] = {}
        self._event_store = event_store or InMemoryEventStore()

    @property
    def store(self) -> InMemoryEventStore:
        return self._event_store

    def subscribe(self, event_type: str, handler: Callable) -> None:
        """订阅事件, handler 可以是同步或异步函数"""
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Subscribed handler for event {event_type}")

    def unsubscribe(self, event_type: str, handler: Callable) -> None:
        if event_type in self._handlers:
            self._handlers[event_type] = [h for h in self._handlers[event_type] if h != handler]

    async def publish(self, event: Event) -> None:
        """
        发布事件

        Handler failures are logged and never reach the publisher.
        """
        self._event_store.save_event(event)

        handlers = self._handlers.get(event.event_type, [])
        if not handlers:
            logger.debug(f"No handlers for event {event.event_type}")
            return

        for handler in list(handlers):
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(event)
                else:
                    handler(event)
            except Exception as e:
                logger.error(f"Error in handler for event {event.event_type}: {e}")

    def get_handler_count(self, event_type: str) -> int:
        return len(self._handlers.get(event_type, []))


# 预定义事件类型
@dataclass
class QueryExecutedEvent(Event):
    """查询执行成功事件"""
    data: Dict[str, Any] = field(default_factory=dict)
    query: str = ""
    mode: str = ""
    duration_ms: float = 0.0
    row_count: int = 0

    def __post_init__(self):
        super().__post_init__()
        self.query = self.query or self.data.get("query", "")
        self.mode = self.mode or self.data.get("mode", "")
        self.duration_ms = self.duration_ms or self.data.get("duration_ms", 0.0)
        self.row_count = self.row_count or self.data.get("row_count", 0)


@dataclass
class QueryFailedEvent(Event):
    """查询失败事件"""
    data: Dict[str, Any] = field(default_factory=dict)
    query: str = ""
    mode: str = ""
    error: str = ""

    def __post_init__(self):
        super().__post_init__()
        self.query = self.query or self.data.get("query", "")
        self.mode = self.mode or self.data.get("mode", "")
        self.error = self.error or self.data.get("error", "")


@dataclass
class SessionEndedEvent(Event):
    """会话结束事件"""
    data: Dict[str, Any] = field(default_factory=dict)
    session_id: str = ""
    reason: str = ""

    def __post_init__(self):
        super().__post_init__()
        self.session_id = self.session_id or self.data.get("session_id", "")
        self.reason = self.reason or self.data.get("reason", "")
