"""Job 单元测试

验证 job.started 构造、log_event、终态互斥、durationMs 与错误规范化。
投递策略使用 AsyncMock 替代。
"""

from unittest.mock import AsyncMock

import pytest
from synquer.enums import EventType, JobState
from synquer.job import Job
from synquer.models import EntityRef, EventOptions, JobOptions


@pytest.fixture
def delivery() -> AsyncMock:
    """记录 deliver() 调用的投递策略"""
    strategy = AsyncMock()
    strategy.deliver = AsyncMock(return_value=None)
    return strategy


def _make_job(delivery, clock, **options) -> Job:
    options.setdefault("type", "order_sync")
    return Job("job-1", JobOptions(**options), delivery, clock=clock)


class TestJobStarted:
    """构造时写入 job.started"""

    def test_started_event_appended_on_construction(self, delivery, clock):
        job = _make_job(delivery, clock)

        assert len(job.events) == 1
        started = job.events[0]
        assert started.type == EventType.STARTED
        assert started.job_id == "job-1"
        assert started.timestamp == clock.now
        assert started.data == {"jobType": "order_sync"}
        assert job.state == JobState.OPEN
        assert job.completed is False

    def test_entity_and_metadata(self, delivery, clock):
        job = _make_job(
            delivery,
            clock,
            entity=EntityRef(type="order", id="123", ref="#1001"),
            metadata={"source": "shopify"},
        )

        assert job.events[0].data == {
            "jobType": "order_sync",
            "entityType": "order",
            "entityId": "123",
            "entityRef": "#1001",
            "metadata": {"source": "shopify"},
        }

    def test_entity_without_ref(self, delivery, clock):
        job = _make_job(delivery, clock, entity={"type": "product", "id": "p-9"})

        data = job.events[0].data
        assert data["entityType"] == "product"
        assert data["entityId"] == "p-9"
        assert "entityRef" not in data

    def test_empty_metadata_omitted(self, delivery, clock):
        """空 metadata 不写入 payload（key 不存在，而不是 {}）"""
        job = _make_job(delivery, clock, metadata={})

        assert "metadata" not in job.events[0].data

    def test_external_id_only_on_first_event(self, delivery, clock):
        job = _make_job(delivery, clock, external_id="ext-42")
        job.log_event("step")

        assert job.events[0].external_id == "ext-42"
        assert job.events[1].external_id is None

    def test_metadata_copied(self, delivery, clock):
        """宿主之后修改 metadata 不影响已记录的事件"""
        metadata = {"attempt": 1}
        job = _make_job(delivery, clock, metadata=metadata)
        metadata["attempt"] = 2

        assert job.events[0].data["metadata"] == {"attempt": 1}


class TestJobLogEvent:
    """log_event() 测试"""

    def test_string_message(self, delivery, clock):
        job = _make_job(delivery, clock)
        job.log_event("Fetching order")

        event = job.events[1]
        assert event.type == EventType.PROGRESS
        assert event.data == {"message": "Fetching order"}

    def test_message_with_data(self, delivery, clock):
        job = _make_job(delivery, clock)
        job.log_event("Mapped", data={"sku": "A-1", "qty": 3})

        assert job.events[1].data == {"message": "Mapped", "sku": "A-1", "qty": 3}

    def test_data_only(self, delivery, clock):
        job = _make_job(delivery, clock)
        job.log_event(data={"progress": 0.5})

        assert job.events[1].data == {"progress": 0.5}

    def test_event_options(self, delivery, clock):
        job = _make_job(delivery, clock)
        job.log_event(EventOptions(message="Batch", data={"size": 10}))

        assert job.events[1].data == {"message": "Batch", "size": 10}

    def test_explicit_data_overrides_message(self, delivery, clock):
        job = _make_job(delivery, clock)
        job.log_event("original", data={"message": "override"})

        assert job.events[1].data == {"message": "override"}

    async def test_ignored_after_completion(self, delivery, clock):
        job = _make_job(delivery, clock)
        await job.done()
        job.log_event("too late")

        assert len(job.events) == 2
        delivered = delivery.deliver.call_args.args[0]
        assert [e.type for e in delivered] == [EventType.STARTED, EventType.DONE]

    def test_timestamps_non_decreasing_when_clock_goes_back(self, delivery, clock):
        job = _make_job(delivery, clock)
        clock.advance(-5000)
        job.log_event("clock stepped back")
        clock.advance(10)
        job.log_event("later")

        timestamps = [e.timestamp for e in job.events]
        assert timestamps == sorted(timestamps)


class TestJobTerminal:
    """done / failed / skip / review 测试"""

    async def test_done_with_result(self, delivery, clock):
        job = _make_job(delivery, clock)
        clock.advance(250)
        await job.done({"orderId": "123"})

        done = job.events[-1]
        assert done.type == EventType.DONE
        assert done.data == {"result": {"orderId": "123"}, "durationMs": 250}
        assert job.completed is True
        delivery.deliver.assert_awaited_once()

    async def test_done_without_result(self, delivery, clock):
        job = _make_job(delivery, clock)
        await job.done()

        assert job.events[-1].data == {"durationMs": 0}

    async def test_failed_with_exception(self, delivery, clock):
        job = _make_job(delivery, clock)
        clock.advance(40)
        try:
            raise ValueError("API timeout")
        except ValueError as e:
            await job.failed(e)

        failed = job.events[-1]
        assert failed.type == EventType.FAILED
        assert failed.data["durationMs"] == 40
        assert failed.data["error"]["message"] == "API timeout"
        assert "ValueError" in failed.data["error"]["stack"]

    async def test_failed_with_unraised_exception_has_no_stack(self, delivery, clock):
        job = _make_job(delivery, clock)
        await job.failed(RuntimeError("boom"))

        assert job.events[-1].data["error"] == {"message": "boom"}

    async def test_failed_with_string(self, delivery, clock):
        job = _make_job(delivery, clock)
        await job.failed("Something went wrong")

        assert job.events[-1].data["error"] == {"message": "Something went wrong"}

    async def test_failed_with_other_object(self, delivery, clock):
        job = _make_job(delivery, clock)
        await job.failed(404)

        assert job.events[-1].data["error"] == {"message": "404"}

    async def test_skip(self, delivery, clock):
        job = _make_job(delivery, clock)
        await job.skip("Already synced")

        skipped = job.events[-1]
        assert skipped.type == EventType.SKIPPED
        assert skipped.data == {"message": "Already synced"}

    async def test_review(self, delivery, clock):
        job = _make_job(delivery, clock)
        await job.review("Price mismatch")

        review = job.events[-1]
        assert review.type == EventType.REVIEW
        assert review.data == {"message": "Price mismatch"}

    async def test_done_result_copied(self, delivery, clock):
        """done() 之后宿主修改 result 不影响已记录与已投递的事件"""
        result = {"orderId": "123", "lines": [{"sku": "A-1"}]}
        job = _make_job(delivery, clock)
        await job.done(result)

        result["orderId"] = "456"
        result["lines"][0]["sku"] = "B-2"

        expected = {"orderId": "123", "lines": [{"sku": "A-1"}]}
        assert job.events[-1].data["result"] == expected
        delivered = delivery.deliver.call_args.args[0]
        assert delivered[-1].data["result"] == expected

    async def test_delivers_full_sequence(self, delivery, clock):
        job = _make_job(delivery, clock)
        job.log_event("one")
        job.log_event("two")
        await job.done()

        delivered = delivery.deliver.call_args.args[0]
        assert [e.type for e in delivered] == [
            EventType.STARTED,
            EventType.PROGRESS,
            EventType.PROGRESS,
            EventType.DONE,
        ]


class TestJobTerminalExclusivity:
    """终态调用互斥：只有第一次生效"""

    @pytest.mark.parametrize(
        "second_call",
        [
            lambda job: job.done(),
            lambda job: job.failed("late failure"),
            lambda job: job.skip("late skip"),
            lambda job: job.review("late review"),
        ],
    )
    async def test_second_terminal_call_is_noop(self, delivery, clock, second_call):
        job = _make_job(delivery, clock)
        await job.done({"ok": True})
        await second_call(job)

        assert len(job.events) == 2
        assert job.events[-1].type == EventType.DONE
        delivery.deliver.assert_awaited_once()

    async def test_failed_then_done(self, delivery, clock):
        job = _make_job(delivery, clock)
        await job.failed("first")
        await job.done()

        assert [e.type for e in job.events] == [EventType.STARTED, EventType.FAILED]
        delivery.deliver.assert_awaited_once()

    @pytest.mark.parametrize("event_type", [EventType.STARTED, EventType.PROGRESS])
    async def test_non_terminal_type_rejected(self, delivery, clock, event_type):
        job = _make_job(delivery, clock)

        with pytest.raises(ValueError, match="not a terminal event type"):
            await job._complete(event_type, {}, clock.now)

        assert job.state == JobState.OPEN
        assert len(job.events) == 1
        delivery.deliver.assert_not_awaited()


class TestJobDeliveryFailure:
    """投递失败不在 Job 内拦截"""

    async def test_delivery_error_propagates(self, delivery, clock):
        delivery.deliver.side_effect = RuntimeError("delivery broke")
        job = _make_job(delivery, clock)

        with pytest.raises(RuntimeError):
            await job.done()

        # 状态已切换，不会因失败而允许再次完成
        assert job.completed is True
        await job.done()
        delivery.deliver.assert_awaited_once()

    def test_events_view_is_read_only(self, delivery, clock):
        job = _make_job(delivery, clock)

        assert isinstance(job.events, tuple)
