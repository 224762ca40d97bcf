"""Key-value store for short-lived secrets and counters.

One-time codes and rate-limit counters live here and nowhere else. Two
backends share one interface:

* ``MemorySecretStore`` keeps entries in a dict guarded by a lock. Expiry is
  checked on every access against an injectable clock, so an entry is gone
  the moment its TTL passes, and a sweep every few hundred writes drops
  entries nobody reads again. Suitable for a single process.
* ``DynamoSecretStore`` keeps entries in a DynamoDB table. Every mutation is
  a single conditional write so concurrent instances cannot both win.
  DynamoDB's own TTL sweep is lazy, so reads and conditions also compare
  ``expires_at`` with the current time.
"""
from __future__ import annotations

import threading
import time
from functools import lru_cache
from typing import Any, Callable, Dict, Optional, Tuple

from botocore.exceptions import ClientError

from chatapi.core.errors import is_conditional_failure
from chatapi.core.settings import S
from chatapi.core.tables import T
from chatapi.core.time import now_ts


class SecretStore:
    def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        raise NotImplementedError

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def consume_if_equal(self, key: str, expected: str) -> bool:
        """Delete ``key`` only if it is live and holds ``expected``. True if this call deleted it."""
        raise NotImplementedError

    def incr_with_expiry(self, key: str, ttl_seconds: int) -> int:
        """Increment a counter, starting a fresh ``ttl_seconds`` window when none is live."""
        raise NotImplementedError

    def ttl_remaining(self, key: str) -> Optional[int]:
        raise NotImplementedError


class MemorySecretStore(SecretStore):
    def __init__(self, clock: Callable[[], float] = time.time, purge_every: int = 256):
        self._clock = clock
        self._items: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()
        # Keys that are never read again would otherwise stay forever.
        self._purge_every = max(1, purge_every)
        self._writes = 0

    def _live(self, key: str, now: float) -> Optional[Tuple[str, float]]:
        item = self._items.get(key)
        if item is None:
            return None
        if item[1] <= now:
            del self._items[key]
            return None
        return item

    def _purge_locked(self, now: float) -> int:
        dead = [k for k, (_, exp) in self._items.items() if exp <= now]
        for k in dead:
            del self._items[k]
        return len(dead)

    def _count_write_locked(self, now: float) -> None:
        self._writes += 1
        if self._writes >= self._purge_every:
            self._writes = 0
            self._purge_locked(now)

    def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            now = self._clock()
            self._items[key] = (value, now + ttl_seconds)
            self._count_write_locked(now)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            item = self._live(key, self._clock())
            return item[0] if item else None

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def consume_if_equal(self, key: str, expected: str) -> bool:
        with self._lock:
            item = self._live(key, self._clock())
            if item is None or item[0] != expected:
                return False
            del self._items[key]
            return True

    def incr_with_expiry(self, key: str, ttl_seconds: int) -> int:
        with self._lock:
            now = self._clock()
            self._count_write_locked(now)
            item = self._live(key, now)
            if item is None:
                self._items[key] = ("1", now + ttl_seconds)
                return 1
            count = int(item[0]) + 1
            self._items[key] = (str(count), item[1])
            return count

    def ttl_remaining(self, key: str) -> Optional[int]:
        with self._lock:
            now = self._clock()
            item = self._live(key, now)
            if item is None:
                return None
            return max(1, int(item[1] - now + 0.999))

    def purge_expired(self) -> int:
        with self._lock:
            return self._purge_locked(self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class DynamoSecretStore(SecretStore):
    def __init__(self, table: Any = None):
        self._table = table if table is not None else T.secrets

    def _key(self, key: str) -> Dict[str, str]:
        return {"secret_key": key}

    def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        expires = now_ts() + int(ttl_seconds)
        # DynamoDB sweeps rows lazily once the TTL attribute passes; readers still check expires_at.
        self._table.put_item(
            Item={"secret_key": key, "value": value, "expires_at": expires, S.ddb_ttl_attr: expires}
        )

    def get(self, key: str) -> Optional[str]:
        it = self._table.get_item(Key=self._key(key), ConsistentRead=True).get("Item")
        if not it or int(it.get("expires_at", 0)) <= now_ts():
            return None
        return it.get("value")

    def delete(self, key: str) -> None:
        self._table.delete_item(Key=self._key(key))

    def consume_if_equal(self, key: str, expected: str) -> bool:
        try:
            self._table.delete_item(
                Key=self._key(key),
                ConditionExpression="#v = :v AND expires_at > :now",
                ExpressionAttributeNames={"#v": "value"},
                ExpressionAttributeValues={":v": expected, ":now": now_ts()},
            )
            return True
        except ClientError as exc:
            if is_conditional_failure(exc):
                return False
            raise

    def incr_with_expiry(self, key: str, ttl_seconds: int) -> int:
        for _ in range(3):
            now = now_ts()
            expires = now + int(ttl_seconds)
            # New window -> reset to 1
            try:
                self._table.update_item(
                    Key=self._key(key),
                    UpdateExpression="SET #c = :one, expires_at = :exp, #ttl = :exp",
                    ConditionExpression="attribute_not_exists(expires_at) OR expires_at <= :now",
                    ExpressionAttributeNames={"#c": "counter", "#ttl": S.ddb_ttl_attr},
                    ExpressionAttributeValues={":one": 1, ":exp": expires, ":now": now},
                )
                return 1
            except ClientError as exc:
                if not is_conditional_failure(exc):
                    raise
            # Same window -> increment
            try:
                r = self._table.update_item(
                    Key=self._key(key),
                    UpdateExpression="ADD #c :one",
                    ConditionExpression="expires_at > :now",
                    ExpressionAttributeNames={"#c": "counter"},
                    ExpressionAttributeValues={":one": 1, ":now": now},
                    ReturnValues="UPDATED_NEW",
                )
                return int(r["Attributes"]["counter"])
            except ClientError as exc:
                if not is_conditional_failure(exc):
                    raise
        raise RuntimeError(f"counter {key} kept flipping windows")

    def ttl_remaining(self, key: str) -> Optional[int]:
        it = self._table.get_item(Key=self._key(key), ConsistentRead=True).get("Item")
        if not it:
            return None
        left = int(it.get("expires_at", 0)) - now_ts()
        return left if left > 0 else None


@lru_cache(maxsize=1)
def get_secret_store() -> SecretStore:
    if S.secret_store_backend == "dynamodb":
        return DynamoSecretStore()
    return MemorySecretStore()
