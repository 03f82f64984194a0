import json
import threading
from typing import Dict, Optional

from remitdesk.store.models import CallbackBinding
from remitdesk.store.redis_conn import get_redis

PREFIX = "binding:"


class BindingRepository:
    """At most one binding per orderNo; `put` supersedes, `consume` is idempotent."""

    def put(self, binding: CallbackBinding) -> None:
        raise NotImplementedError

    def get(self, order_no: str) -> Optional[CallbackBinding]:
        raise NotImplementedError

    def consume(self, order_no: str, at_ms: int) -> Optional[CallbackBinding]:
        binding = self.get(order_no)
        if binding is None or not binding.active:
            return binding
        binding.consumedAt = at_ms
        self.put(binding)
        return binding


class MemoryBindingRepository(BindingRepository):
    def __init__(self):
        self._bindings: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def put(self, binding: CallbackBinding) -> None:
        with self._lock:
            self._bindings[binding.orderNo] = binding.to_dict()

    def get(self, order_no: str) -> Optional[CallbackBinding]:
        with self._lock:
            raw = self._bindings.get(order_no)
        return CallbackBinding.from_dict(raw) if raw else None

    def consume(self, order_no: str, at_ms: int) -> Optional[CallbackBinding]:
        with self._lock:
            raw = self._bindings.get(order_no)
            if raw is None:
                return None
            if raw.get("consumedAt") is None:
                raw["consumedAt"] = at_ms
            return CallbackBinding.from_dict(dict(raw))


class RedisBindingRepository(BindingRepository):
    def __init__(self, redis=None):
        self._redis = redis

    @property
    def r(self):
        return self._redis if self._redis is not None else get_redis()

    def put(self, binding: CallbackBinding) -> None:
        self.r.set(f"{PREFIX}{binding.orderNo}", json.dumps(binding.to_dict()))

    def get(self, order_no: str) -> Optional[CallbackBinding]:
        raw = self.r.get(f"{PREFIX}{order_no}")
        return CallbackBinding.from_dict(json.loads(raw)) if raw else None
