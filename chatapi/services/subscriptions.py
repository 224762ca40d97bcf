from __future__ import annotations

import threading
from typing import Dict, List, Optional

from chatapi.services.broker import MessageBroker, Subscription, broker as default_broker


class SubscriptionManager:
    """Attach/detach bookkeeping for the broker subscriptions of one connection.

    A connection holds at most one subscription per topic. ``detach_all`` runs
    on disconnect so nothing stays registered after the client is gone; use the
    manager as a context manager to get that for free.
    """

    def __init__(self, owner: str, broker: Optional[MessageBroker] = None):
        self.owner = owner
        self.broker = broker or default_broker
        self._subs: Dict[str, Subscription] = {}
        self._lock = threading.Lock()

    def attach(self, topic: str) -> Subscription:
        with self._lock:
            sub = self._subs.get(topic)
            if sub is not None and sub.attached:
                return sub
            sub = self.broker.subscribe(topic)
            self._subs[topic] = sub
            return sub

    def detach(self, topic: str) -> bool:
        with self._lock:
            sub = self._subs.pop(topic, None)
        if sub is None:
            return False
        return self.broker.unsubscribe(sub)

    def detach_all(self) -> int:
        with self._lock:
            subs = list(self._subs.values())
            self._subs.clear()
        return sum(1 for sub in subs if self.broker.unsubscribe(sub))

    def get(self, topic: str) -> Optional[Subscription]:
        with self._lock:
            return self._subs.get(topic)

    @property
    def topics(self) -> List[str]:
        with self._lock:
            return [t for t, sub in self._subs.items() if sub.attached]

    def __enter__(self) -> "SubscriptionManager":
        return self

    def __exit__(self, *exc) -> None:
        self.detach_all()
