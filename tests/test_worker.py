"""Tests for the worker lifecycle and MQTT topic matching."""

from __future__ import annotations

import asyncio

import pytest
from conftest import SleepyWorker

from solar_ev_charger.exceptions import WorkerStopTimeout
from solar_ev_charger.mqtt_client import MQTTClient


@pytest.mark.asyncio
async def test_stop_preempts_wait() -> None:
    worker = SleepyWorker()
    await worker.start()
    await asyncio.sleep(0.05)
    await worker.stop(timeout=1)

    assert worker.ticks > 0
    assert worker.torn_down
    assert worker.closed.is_set()


@pytest.mark.asyncio
async def test_stop_timeout() -> None:
    worker = SleepyWorker(teardown_delay=0.5)
    await worker.start()
    with pytest.raises(WorkerStopTimeout):
        await worker.stop(timeout=0.05)
    await asyncio.wait_for(worker.closed.wait(), 1)


@pytest.mark.asyncio
async def test_stop_without_start() -> None:
    worker = SleepyWorker()
    await worker.stop(timeout=0.05)
    assert worker.closed.is_set()


@pytest.mark.asyncio
async def test_shared_shutdown_stops_every_worker() -> None:
    shutdown = asyncio.Event()
    workers = [SleepyWorker(shutdown), SleepyWorker(shutdown)]
    for worker in workers:
        await worker.start()

    shutdown.set()
    await asyncio.wait_for(
        asyncio.gather(*(w.closed.wait() for w in workers)), 1
    )
    assert all(w.stopping for w in workers)


@pytest.mark.asyncio
async def test_publish_gives_up_on_full_queue() -> None:
    worker = SleepyWorker()
    worker.publish_timeout = 0.01
    queue: asyncio.Queue = asyncio.Queue(1)

    assert await worker._publish(queue, 1)
    assert not await worker._publish(queue, 2)
    assert queue.get_nowait() == 1


@pytest.mark.parametrize(
    ("pattern", "topic", "expected"),
    [
        ("openevse/#", "openevse/amp", True),
        ("openevse/#", "openevse", True),
        ("go-eCharger/+/status", "go-eCharger/012345/status", True),
        ("go-eCharger/012345/status", "go-eCharger/012345/status", True),
        ("go-eCharger/012345/status", "go-eCharger/999/status", False),
        ("openevse/amp", "openevse/amp/extra", False),
        ("openevse/amp/extra", "openevse/amp", False),
    ],
)
def test_topic_matches(pattern: str, topic: str, expected: bool) -> None:
    assert MQTTClient.topic_matches(pattern, topic) is expected


@pytest.mark.asyncio
async def test_cancelled_publish_does_not_leave_pending_put() -> None:
    worker = SleepyWorker()
    queue: asyncio.Queue = asyncio.Queue(1)
    queue.put_nowait(1)

    publisher = asyncio.create_task(worker._publish(queue, 2))
    await asyncio.sleep(0.01)
    publisher.cancel()
    with pytest.raises(asyncio.CancelledError):
        await publisher

    assert queue.get_nowait() == 1
    await asyncio.sleep(0.01)
    assert queue.empty()
