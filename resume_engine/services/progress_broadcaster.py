"""
Progress fan-out to live observers (server-sent event connections).

Observers are keyed by (user_id, document_id, connection_id) and each owns an
asyncio.Queue. The registry is only touched under an asyncio.Lock. Publishing
never blocks or raises: a full or broken sink is logged and dropped.
"""
import asyncio
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from resume_engine.utils.logger import get_logger
from resume_engine.utils.metrics import inc

logger = get_logger("progress")

CONNECTED = "connected"
PROGRESS = "progress"
HEARTBEAT = "heartbeat"
COMPLETE = "complete"
ERROR = "error"

EVENT_TYPES = (CONNECTED, PROGRESS, HEARTBEAT, COMPLETE, ERROR)

ObserverKey = Tuple[str, str, str]


@dataclass(frozen=True)
class ProgressEvent:
    type: str
    stage: str = ""
    percentage: int = 0
    message: str = ""
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "stage": self.stage,
            "percentage": self.percentage,
            "message": self.message,
            "timestamp": self.timestamp,
        }

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.to_dict())}\n\n"


@dataclass
class Subscription:
    key: ObserverKey
    queue: asyncio.Queue

    @property
    def document_id(self) -> str:
        return self.key[1]


class ProgressBroadcaster:
    def __init__(self, max_queue_size: int = 100):
        self._observers: Dict[ObserverKey, asyncio.Queue] = {}
        self._lock = asyncio.Lock()
        self.max_queue_size = max_queue_size

    async def subscribe(self, user_id: str, document_id: str, connection_id: Optional[str] = None) -> Subscription:
        key = (str(user_id), str(document_id), connection_id or uuid.uuid4().hex)
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        async with self._lock:
            self._observers[key] = queue
        logger.info(f"Progress observer connected for resume {document_id}", extra={"document_id": document_id})
        return Subscription(key=key, queue=queue)

    async def unsubscribe(self, subscription: Subscription) -> None:
        async with self._lock:
            self._observers.pop(subscription.key, None)
        logger.info(
            f"Progress observer disconnected for resume {subscription.document_id}",
            extra={"document_id": subscription.document_id},
        )

    async def publish(self, document_id: str, event: ProgressEvent, user_id: Optional[str] = None) -> int:
        """Push an event to every observer of document_id. Returns how many received it."""
        async with self._lock:
            targets = [
                (key, queue)
                for key, queue in self._observers.items()
                if key[1] == str(document_id) and (user_id is None or key[0] == str(user_id))
            ]

        delivered = 0
        dropped = []
        for key, queue in targets:
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(
                    f"Progress observer queue full, dropping connection {key[2]}",
                    extra={"document_id": document_id},
                )
                dropped.append(key)

        if dropped:
            inc("progress.dropped", len(dropped))
            async with self._lock:
                for key in dropped:
                    self._observers.pop(key, None)
        return delivered

    async def observer_count(self, document_id: Optional[str] = None) -> int:
        async with self._lock:
            if document_id is None:
                return len(self._observers)
            return sum(1 for key in self._observers if key[1] == str(document_id))


_broadcaster: Optional[ProgressBroadcaster] = None


def get_broadcaster() -> ProgressBroadcaster:
    """Process-scoped broadcaster, injected into routes via Depends"""
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = ProgressBroadcaster()
    return _broadcaster
