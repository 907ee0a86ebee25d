"""
标记存储与延迟任务队列测试
"""
import asyncio
from datetime import timedelta
from types import SimpleNamespace

from sf_core.services import InMemoryMarkerStore, RedisMarkerStore
from sf_core.tasks import ArqTaskQueue, LocalTaskQueue
from sf_core.utils.redis import MARKER_KEY_PREFIX, marker_key


class TestInMemoryMarkerStore:

    async def test_set_if_absent_with_ttl(self, clock):
        store = InMemoryMarkerStore(clock)

        assert await store.mark("order_batch:a@x.com", 5) is True
        assert await store.mark("order_batch:a@x.com", 5) is False
        assert await store.seen("order_batch:a@x.com")

        clock.advance(5)
        assert not await store.seen("order_batch:a@x.com")
        assert await store.mark("order_batch:a@x.com", 5) is True


class FakeRedis:
    """记录 SET NX EX 调用的 Redis 客户端替身"""

    def __init__(self):
        self.values = {}
        self.set_calls = []

    async def set(self, key, value, ex=None, nx=False):
        self.set_calls.append((key, ex, nx))
        if nx and key in self.values:
            return None
        self.values[key] = value
        return True

    async def exists(self, key):
        return int(key in self.values)


class TestRedisMarkerStore:

    async def test_keys_are_prefixed(self):
        client = FakeRedis()
        store = RedisMarkerStore(client)

        assert await store.mark("order_batch:a@x.com", 5) is True
        assert await store.mark("order_batch:a@x.com", 5) is False
        assert await store.seen("order_batch:a@x.com")
        assert not await store.seen("order_batch:b@x.com")

        assert marker_key("order_batch:a@x.com") == "sf:marker:order_batch:a@x.com"
        assert client.set_calls[0] == (MARKER_KEY_PREFIX + "order_batch:a@x.com", 5, True)


class TestLocalTaskQueue:

    async def test_runs_after_delay(self):
        calls = []

        async def check_order_batch(ctx, order_id, customer_email):
            calls.append((ctx["job_id"], order_id, customer_email, ctx["marker"]))

        queue = LocalTaskQueue([check_order_batch], {"marker": "ctx"})
        task = await queue.schedule(0.01, "check_order_batch", order_id=7, customer_email="a@x.com")

        await asyncio.sleep(0.05)
        await queue.close()

        assert calls == [(task.task_id, 7, "a@x.com", "ctx")]
        assert task.done

    async def test_cancel_before_run(self):
        calls = []

        async def check_order_batch(ctx, **kwargs):
            calls.append(kwargs)

        queue = LocalTaskQueue([check_order_batch])
        task = await queue.schedule(0.05, "check_order_batch", order_id=1, customer_email="a@x.com")

        assert await queue.cancel(task) is True
        await asyncio.sleep(0.1)
        await queue.close()

        assert calls == []
        assert task.cancelled
        assert await queue.cancel(task) is False

    async def test_failing_task_is_logged(self):
        async def check_order_batch(ctx, **kwargs):
            raise RuntimeError("boom")

        queue = LocalTaskQueue([check_order_batch])
        task = await queue.schedule(0, "check_order_batch")

        await asyncio.sleep(0.02)
        await queue.close()

        assert task.done


class TestOrderTasks:

    async def test_check_order_batch_delegates(self):
        from sf_core.services.batch_correlator import BatchDecision
        from sf_core.tasks import check_order_batch

        seen = []

        class StubCorrelator:
            async def run_deferred_check(self, order_id, customer_email):
                seen.append((order_id, customer_email))
                return BatchDecision(mode="empty")

        result = await check_order_batch(
            {"batch_correlator": StubCorrelator(), "job_id": "j1"}, order_id=3, customer_email="a@x.com"
        )

        assert seen == [(3, "a@x.com")]
        assert result == {"mode": "empty", "order_ids": []}

    def test_worker_registers_tasks(self):
        from sf_core.tasks.arq_worker import WorkerSettings

        assert [f.__name__ for f in WorkerSettings.functions] == ["check_order_batch"]
        assert WorkerSettings.allow_abort_jobs is True


class TestTaskQueueClock:

    async def test_local_run_at_follows_clock(self, clock):
        async def check_order_batch(ctx, **kwargs):
            pass

        queue = LocalTaskQueue([check_order_batch], clock=clock)
        task = await queue.schedule(30, "check_order_batch", order_id=1, customer_email="a@x.com")

        assert task.run_at == clock.now() + timedelta(seconds=30)

        assert await queue.cancel(task) is True
        await queue.close()

    async def test_arq_run_at_follows_clock(self, clock):
        enqueued = []

        class FakePool:
            async def enqueue_job(self, name, _job_id=None, _defer_by=None, **kwargs):
                enqueued.append((name, _defer_by, kwargs))
                return SimpleNamespace(job_id=_job_id)

        queue = ArqTaskQueue(FakePool(), clock)
        task = await queue.schedule(3, "check_order_batch", order_id=4, customer_email="a@x.com")

        assert task.run_at == clock.now() + timedelta(seconds=3)
        assert task.task_id.startswith("check_order_batch:")
        assert enqueued == [
            ("check_order_batch", timedelta(seconds=3), {"order_id": 4, "customer_email": "a@x.com"})
        ]
