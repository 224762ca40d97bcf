"""In-process publish/subscribe router keyed by conversation id.

Each conversation id is a topic. ``publish`` hands a message to every
subscription attached to that topic at the time of the call and to no other
subscription. Publishes are serialized under the registry lock and every
subscription buffers FIFO, so two publishes to one topic reach each
subscriber in call order. There is no backlog: a subscription only sees what
is published after it attached.

Publishing may happen from a worker thread (sync route handlers run in the
threadpool). Delivery into a subscription owned by an event loop always goes
through ``call_soon_threadsafe``, whichever thread publishes, so the loop sees
the puts in publish order.

A subscription moves UNATTACHED -> ATTACHED -> DETACHED and never back.
Detaching wakes its consumer and ends iteration. A subscription whose buffer
fills up is detached rather than blocking the publisher.
"""
from __future__ import annotations

import asyncio
import threading
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

from chatapi.core.settings import S
from chatapi.metrics import record_published, set_active_subscriptions

_CLOSED = object()


class SubscriptionState(str, Enum):
    UNATTACHED = "unattached"
    ATTACHED = "attached"
    DETACHED = "detached"


class SubscriptionClosed(Exception):
    pass


class Subscription:
    def __init__(self, topic: str, maxsize: int, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.id = uuid.uuid4().hex
        self.topic = topic
        self.state = SubscriptionState.UNATTACHED
        self.overflowed = False
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._loop = loop
        self._broker: Optional["MessageBroker"] = None

    @property
    def attached(self) -> bool:
        return self.state is SubscriptionState.ATTACHED

    def _enqueue(self, item: Any) -> bool:
        if self._loop is None:
            return self._put(item)
        # Always through the loop's callback queue, even from the loop thread, so
        # a thread publish scheduled earlier is never overtaken by a later one.
        try:
            self._loop.call_soon_threadsafe(self._put, item)
        except RuntimeError:
            # Owning loop is closed; nobody will ever read this subscription.
            return False
        return True

    def _put(self, item: Any) -> bool:
        if item is _CLOSED:
            while not self._queue.empty():
                self._queue.get_nowait()
            self._queue.put_nowait(_CLOSED)
            return True
        if self.state is SubscriptionState.DETACHED:
            return False
        try:
            self._queue.put_nowait(item)
            return True
        except asyncio.QueueFull:
            self.overflowed = True
            if self._broker is not None:
                self._broker.unsubscribe(self)
            return False

    async def get(self) -> Any:
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            raise SubscriptionClosed(self.topic)
        return item

    def get_nowait(self) -> Any:
        item = self._queue.get_nowait()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            raise SubscriptionClosed(self.topic)
        return item

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> bool:
        if self._broker is None:
            self.state = SubscriptionState.DETACHED
            return False
        return self._broker.unsubscribe(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Any:
        try:
            return await self.get()
        except SubscriptionClosed:
            raise StopAsyncIteration


class MessageBroker:
    def __init__(self, queue_size: Optional[int] = None):
        self.queue_size = queue_size or S.broker_queue_size
        self._topics: Dict[str, Dict[str, Subscription]] = {}
        # Reentrant: an overflowing subscription detaches itself from inside publish.
        self._lock = threading.RLock()
        self._active = 0

    def subscribe(self, topic: str) -> Subscription:
        try:
            loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        sub = Subscription(topic, self.queue_size, loop)
        with self._lock:
            sub._broker = self
            self._topics.setdefault(topic, {})[sub.id] = sub
            sub.state = SubscriptionState.ATTACHED
            self._active += 1
            set_active_subscriptions(self._active)
        return sub

    def publish(self, topic: str, message: Any) -> int:
        with self._lock:
            subs = list(self._topics.get(topic, {}).values())
            delivered = 0
            for sub in subs:
                if not sub.attached:
                    continue
                if sub._enqueue(message):
                    delivered += 1
                else:
                    self._detach_locked(sub)
        record_published(delivered)
        return delivered

    def unsubscribe(self, sub: Subscription) -> bool:
        with self._lock:
            return self._detach_locked(sub)

    def _detach_locked(self, sub: Subscription) -> bool:
        if sub.state is not SubscriptionState.ATTACHED or sub._broker is not self:
            return False
        subs = self._topics.get(sub.topic)
        if subs is not None:
            subs.pop(sub.id, None)
            if not subs:
                self._topics.pop(sub.topic, None)
        sub.state = SubscriptionState.DETACHED
        self._active -= 1
        set_active_subscriptions(self._active)
        sub._enqueue(_CLOSED)
        return True

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._topics.get(topic, {}))

    def topics(self) -> List[str]:
        with self._lock:
            return list(self._topics)

    @property
    def active_count(self) -> int:
        return self._active


broker = MessageBroker()
