# Overview: Process-local, per-user buffered delivery of approval decision events.

"""
Approval Event Bus

Each connected client registers a sink (a queue.Queue drained by the SSE
generator). While a user has no sink, events are buffered and flushed in
arrival order on the next register.

DESIGN:
- One lock serializes register / unregister / notify, so per-user order holds
- Buffers keep the newest `queue_limit` events per user
- State is per process; multi-process deployments deliver best-effort
"""

from __future__ import annotations

import logging
import queue
import threading
from collections import defaultdict, deque


logger = logging.getLogger(__name__)

EVENT_APPROVAL_DECISION = "approval_decision"
EVENT_READY = "ready"


class ApprovalEventBus:
    def __init__(self, queue_limit: int = 10):
        self.queue_limit = queue_limit
        self._lock = threading.Lock()
        self._sinks: dict[int, list[queue.Queue]] = defaultdict(list)
        self._pending: dict[int, deque] = {}

    def register(self, user_id: int, sink: queue.Queue | None = None) -> queue.Queue:
        """Attach a sink; buffered events are flushed into it before the ready event."""
        sink = sink if sink is not None else queue.Queue()
        with self._lock:
            for payload in self._pending.pop(user_id, ()):
                sink.put((EVENT_APPROVAL_DECISION, payload))
            sink.put((EVENT_READY, {"ok": True}))
            self._sinks[user_id].append(sink)
        return sink

    def unregister(self, user_id: int, sink: queue.Queue) -> None:
        with self._lock:
            sinks = self._sinks.get(user_id)
            if not sinks:
                return
            if sink in sinks:
                sinks.remove(sink)
            if not sinks:
                del self._sinks[user_id]

    def notify(self, user_id: int, payload: dict) -> int:
        """Fan out to live sinks, else buffer. Returns the number of sinks reached."""
        with self._lock:
            sinks = list(self._sinks.get(user_id, ()))
            if not sinks:
                buffer = self._pending.setdefault(user_id, deque(maxlen=self.queue_limit))
                buffer.append(payload)
                logger.debug("Buffered approval event for user %s (%d queued)", user_id, len(buffer))
                return 0
            for sink in sinks:
                sink.put((EVENT_APPROVAL_DECISION, payload))
        return len(sinks)

    def ack(self, user_id: int) -> None:
        with self._lock:
            self._pending.pop(user_id, None)

    def pending(self, user_id: int) -> list[dict]:
        with self._lock:
            return list(self._pending.get(user_id, ()))

    def is_connected(self, user_id: int) -> bool:
        with self._lock:
            return bool(self._sinks.get(user_id))

    def reset(self) -> None:
        with self._lock:
            self._sinks.clear()
            self._pending.clear()


approval_events = ApprovalEventBus()


def build_decision_event(request, *, applied: bool | None = None) -> dict:
    return {
        "request_id": request.id,
        "status": request.status,
        "entity_type": request.entity_type,
        "entity_id": request.entity_id,
        "summary": request.summary,
        "decision_notes": request.decision_notes,
        "applied": applied,
    }
