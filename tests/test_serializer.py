import asyncio

import pytest

from moltnews.serializer import SerializerClosedError, WriteSerializer


def test_operations_run_one_at_a_time_in_submission_order():
    serializer = WriteSerializer()
    events = []
    active = 0
    peak = 0

    def make(label, delay):
        async def operation():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            events.append(f"start-{label}")
            await asyncio.sleep(delay)
            events.append(f"end-{label}")
            active -= 1
            return label

        return operation

    async def scenario():
        return await asyncio.gather(
            serializer.enqueue(make("a", 0.02)),
            serializer.enqueue(make("b", 0)),
            serializer.enqueue(make("c", 0.01)),
        )

    results = asyncio.run(scenario())

    assert results == ["a", "b", "c"]
    assert peak == 1
    assert events == ["start-a", "end-a", "start-b", "end-b", "start-c", "end-c"]


def test_failure_does_not_stop_the_queue():
    serializer = WriteSerializer()

    async def boom():
        raise RuntimeError("boom")

    async def ok():
        return "ok"

    async def scenario():
        return await asyncio.gather(
            serializer.enqueue(boom),
            serializer.enqueue(ok),
            return_exceptions=True,
        )

    first, second = asyncio.run(scenario())

    assert isinstance(first, RuntimeError)
    assert second == "ok"
    assert serializer.pending == 0


def test_drain_waits_for_queued_work_and_close_rejects_new_work():
    serializer = WriteSerializer()
    finished = []

    async def slow():
        await asyncio.sleep(0.01)
        finished.append("slow")

    async def scenario():
        task = asyncio.ensure_future(serializer.enqueue(slow))
        await asyncio.sleep(0)
        await serializer.close()
        assert finished == ["slow"]
        await task
        with pytest.raises(SerializerClosedError):
            await serializer.enqueue(slow)

    asyncio.run(scenario())
    assert serializer.closed is True
