"""
Order persistence.

Every status write goes through `update()`, a load -> mutate -> compare-and-set
loop on the document `version`, so a webhook and a dispute correction racing on
the same order never interleave partial writes.
"""
from __future__ import annotations

import copy
import json
import threading
from typing import Callable, Dict, List, Optional, Tuple

from remitdesk.core.errors import ConcurrentUpdateError, NotFound
from remitdesk.observability.logging import log
from remitdesk.settings import settings
from remitdesk.store.models import Order
from remitdesk.store.redis_conn import get_redis

ORDER_PREFIX = "order:"
PRINCIPAL_INDEX_PREFIX = "orders:principal:"

# Returns False to signal "nothing to write"
Mutator = Callable[[Order], Optional[bool]]

# KEYS[1]=order key, ARGV[1]=expected version, ARGV[2]=new document
CAS_SCRIPT = """
local cur = redis.call("GET", KEYS[1])
if not cur then
    return -1
end
local doc = cjson.decode(cur)
if tonumber(doc["version"]) ~= tonumber(ARGV[1]) then
    return 0
end
redis.call("SET", KEYS[1], ARGV[2])
return 1
"""


def _matches(order: Order, transfer_mode=None, country=None, currency=None, day_start_ms=None) -> bool:
    if transfer_mode and order.transferMode != transfer_mode:
        return False
    if country and order.country != country.upper():
        return False
    if currency and order.currency != currency.upper():
        return False
    if day_start_ms is not None and not (day_start_ms <= order.createdAt < day_start_ms + 86_400_000):
        return False
    return True


class OrderRepository:
    """Store contract: query by orderNo or owner, atomic single-document update."""

    def get(self, order_no: str) -> Optional[Order]:
        raise NotImplementedError

    def create(self, order: Order) -> None:
        raise NotImplementedError

    def list_for_principal(self, principal_id: str, *, limit: int = 10, transfer_mode: Optional[str] = None,
                           country: Optional[str] = None, currency: Optional[str] = None,
                           day_start_ms: Optional[int] = None) -> List[Order]:
        raise NotImplementedError

    def compare_and_set(self, order: Order, expected_version: int) -> bool:
        raise NotImplementedError

    def update(self, order_no: str, mutate: Mutator, *, max_retries: Optional[int] = None) -> Tuple[Order, bool]:
        """
        Apply `mutate` to a fresh copy of the order and write it conditionally.
        Returns (order, changed). Retries on version conflicts.
        """
        attempts = int(max_retries or settings.CAS_MAX_RETRIES)
        for attempt in range(1, attempts + 1):
            current = self.get(order_no)
            if current is None:
                raise NotFound("Order", order_no)
            expected = current.version
            draft = copy.deepcopy(current)
            if mutate(draft) is False:
                return current, False
            draft.version = expected + 1
            if self.compare_and_set(draft, expected):
                return draft, True
            log(event="order_cas_conflict", orderNo=order_no, attempt=attempt, expectedVersion=expected)
        raise ConcurrentUpdateError(f"Could not update order {order_no} after {attempts} attempts")


class MemoryOrderRepository(OrderRepository):
    """Single-process store used for local runs and tests."""

    def __init__(self):
        self._orders: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def get(self, order_no: str) -> Optional[Order]:
        with self._lock:
            raw = self._orders.get(order_no)
            return Order.from_dict(copy.deepcopy(raw)) if raw else None

    def create(self, order: Order) -> None:
        with self._lock:
            if order.orderNo in self._orders:
                raise ValueError(f"order {order.orderNo} already exists")
            self._orders[order.orderNo] = order.to_dict()

    def list_for_principal(self, principal_id, *, limit=10, transfer_mode=None, country=None, currency=None,
                           day_start_ms=None):
        with self._lock:
            owned = [Order.from_dict(copy.deepcopy(d)) for d in self._orders.values() if d["principalId"] == principal_id]
        owned.sort(key=lambda o: o.createdAt, reverse=True)
        return [o for o in owned if _matches(o, transfer_mode, country, currency, day_start_ms)][:limit]

    def compare_and_set(self, order: Order, expected_version: int) -> bool:
        with self._lock:
            cur = self._orders.get(order.orderNo)
            if cur is None or int(cur.get("version", 0)) != expected_version:
                return False
            self._orders[order.orderNo] = order.to_dict()
            return True


class RedisOrderRepository(OrderRepository):
    """JSON documents under order:{orderNo}; per-principal sorted-set index by createdAt."""

    def __init__(self, redis=None):
        self._redis = redis

    @property
    def r(self):
        return self._redis if self._redis is not None else get_redis()

    def get(self, order_no: str) -> Optional[Order]:
        raw = self.r.get(f"{ORDER_PREFIX}{order_no}")
        if not raw:
            return None
        return Order.from_dict(json.loads(raw))

    def create(self, order: Order) -> None:
        r = self.r
        created = r.set(f"{ORDER_PREFIX}{order.orderNo}", json.dumps(order.to_dict()), nx=True)
        if not created:
            raise ValueError(f"order {order.orderNo} already exists")
        r.zadd(f"{PRINCIPAL_INDEX_PREFIX}{order.principalId}", {order.orderNo: order.createdAt})

    def list_for_principal(self, principal_id, *, limit=10, transfer_mode=None, country=None, currency=None,
                           day_start_ms=None):
        r = self.r
        order_nos = r.zrevrange(f"{PRINCIPAL_INDEX_PREFIX}{principal_id}", 0, -1) or []
        if not order_nos:
            return []
        raws = r.mget([f"{ORDER_PREFIX}{no}" for no in order_nos])
        out: List[Order] = []
        for raw in raws:
            if not raw:
                continue
            order = Order.from_dict(json.loads(raw))
            if _matches(order, transfer_mode, country, currency, day_start_ms):
                out.append(order)
                if len(out) >= limit:
                    break
        return out

    def compare_and_set(self, order: Order, expected_version: int) -> bool:
        res = self.r.eval(CAS_SCRIPT, 1, f"{ORDER_PREFIX}{order.orderNo}", expected_version, json.dumps(order.to_dict()))
        return int(res) == 1
