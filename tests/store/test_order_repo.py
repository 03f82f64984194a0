import json
from unittest.mock import MagicMock

import pytest

from remitdesk.core import state_machine as sm
from remitdesk.core.errors import ConcurrentUpdateError, NotFound
from remitdesk.store.binding_repo import MemoryBindingRepository, RedisBindingRepository
from remitdesk.store.models import CallbackBinding, Order, StatusChange
from remitdesk.store.order_repo import (
    CAS_SCRIPT,
    ORDER_PREFIX,
    PRINCIPAL_INDEX_PREFIX,
    MemoryOrderRepository,
    RedisOrderRepository,
)


def _order(order_no="1234567890", created=1_000, **kw):
    return Order(orderNo=order_no, principalId="agent1", createdAt=created,
                 statusHistory=[StatusChange(status=sm.PENDING, timestamp=created)], **kw)


def _to_success(o):
    o.status = sm.SUCCESS
    return True


def test_memory_roundtrip_keeps_history_types():
    repo = MemoryOrderRepository()
    repo.create(_order())
    loaded = repo.get("1234567890")
    assert isinstance(loaded.statusHistory[0], StatusChange)
    assert repo.get("missing") is None


def test_memory_create_rejects_duplicates():
    repo = MemoryOrderRepository()
    repo.create(_order())
    with pytest.raises(ValueError):
        repo.create(_order())


def test_update_bumps_version_and_respects_no_op():
    repo = MemoryOrderRepository()
    repo.create(_order())

    order, changed = repo.update("1234567890", _to_success)
    assert changed and order.version == 1

    order, changed = repo.update("1234567890", lambda o: False)
    assert not changed and order.version == 1
    assert repo.get("1234567890").status == sm.SUCCESS


def test_update_missing_order():
    with pytest.raises(NotFound):
        MemoryOrderRepository().update("missing", _to_success)


def test_update_retries_after_conflict():
    repo = MemoryOrderRepository()
    repo.create(_order())
    calls = {"n": 0}

    def _mutate(o):
        calls["n"] += 1
        if calls["n"] == 1:
            # a competing writer lands between our read and our write
            repo.compare_and_set(_order(version=1, failReason="raced"), 0)
        o.status = sm.FAILED
        return True

    order, changed = repo.update("1234567890", _mutate)

    assert changed
    assert calls["n"] == 2
    assert order.version == 2
    assert order.failReason == "raced"


def test_update_gives_up_after_max_retries():
    repo = MemoryOrderRepository()
    repo.create(_order())
    repo.compare_and_set = MagicMock(return_value=False)
    with pytest.raises(ConcurrentUpdateError):
        repo.update("1234567890", _to_success, max_retries=3)
    assert repo.compare_and_set.call_count == 3


def test_memory_list_is_newest_first_and_filtered():
    repo = MemoryOrderRepository()
    repo.create(_order("A", created=1_000, country="CN"))
    repo.create(_order("B", created=3_000, country="IN"))
    repo.create(_order("C", created=2_000, country="CN"))
    repo.create(Order(orderNo="X", principalId="agent2", createdAt=4_000))

    assert [o.orderNo for o in repo.list_for_principal("agent1")] == ["B", "C", "A"]
    assert [o.orderNo for o in repo.list_for_principal("agent1", country="cn")] == ["C", "A"]
    assert [o.orderNo for o in repo.list_for_principal("agent1", limit=1)] == ["B"]


def test_redis_create_uses_nx_and_indexes():
    r = MagicMock()
    r.set.return_value = True
    RedisOrderRepository(redis=r).create(_order())

    key, raw = r.set.call_args[0]
    assert key == f"{ORDER_PREFIX}1234567890"
    assert json.loads(raw)["orderNo"] == "1234567890"
    assert r.set.call_args[1] == {"nx": True}
    r.zadd.assert_called_once_with(f"{PRINCIPAL_INDEX_PREFIX}agent1", {"1234567890": 1_000})


def test_redis_create_duplicate():
    r = MagicMock()
    r.set.return_value = None
    with pytest.raises(ValueError):
        RedisOrderRepository(redis=r).create(_order())
    r.zadd.assert_not_called()


def test_redis_compare_and_set_runs_script():
    r = MagicMock()
    r.eval.side_effect = [1, 0]
    repo = RedisOrderRepository(redis=r)
    order = _order(version=3)

    assert repo.compare_and_set(order, 2) is True
    assert repo.compare_and_set(order, 2) is False
    script, numkeys, key, expected, doc = r.eval.call_args[0]
    assert script == CAS_SCRIPT
    assert (numkeys, key, expected) == (1, f"{ORDER_PREFIX}1234567890", 2)
    assert json.loads(doc)["version"] == 3


def test_redis_update_goes_through_cas():
    r = MagicMock()
    r.get.return_value = json.dumps(_order().to_dict())
    r.eval.return_value = 1

    order, changed = RedisOrderRepository(redis=r).update("1234567890", _to_success)

    assert changed and order.status == sm.SUCCESS
    assert r.eval.call_args[0][3] == 0


def test_redis_list_skips_missing_documents():
    r = MagicMock()
    r.zrevrange.return_value = ["B", "GONE", "A"]
    r.mget.return_value = [json.dumps(_order("B", created=2_000).to_dict()), None,
                           json.dumps(_order("A").to_dict())]

    orders = RedisOrderRepository(redis=r).list_for_principal("agent1")

    assert [o.orderNo for o in orders] == ["B", "A"]
    r.mget.assert_called_once_with([f"{ORDER_PREFIX}B", f"{ORDER_PREFIX}GONE", f"{ORDER_PREFIX}A"])


def test_memory_binding_consume_is_idempotent():
    repo = MemoryBindingRepository()
    repo.put(CallbackBinding(orderNo="1", provider="voice", callbackUrl="u", callbackToken="t"))

    first = repo.consume("1", 100)
    second = repo.consume("1", 200)

    assert first.consumedAt == 100
    assert second.consumedAt == 100
    assert repo.consume("missing", 100) is None


def test_redis_binding_consume_writes_once():
    r = MagicMock()
    r.get.return_value = json.dumps(CallbackBinding(orderNo="1", provider="text", callbackUrl="u",
                                                    callbackToken="t").to_dict())
    repo = RedisBindingRepository(redis=r)

    binding = repo.consume("1", 100)

    assert binding.consumedAt == 100
    key, raw = r.set.call_args[0]
    assert key == "binding:1"
    assert json.loads(raw)["consumedAt"] == 100
