"""Tests for autoconnect_agent.events and autoconnect_agent.timers."""

from __future__ import annotations

import asyncio
from typing import List

import pytest

from autoconnect_agent.events import EventChannel
from autoconnect_agent.timers import PeriodicTimer, interruptible_sleep


def test_subscribers_receive_events_in_order() -> None:
    channel: EventChannel[int] = EventChannel("test")
    seen: List[str] = []
    channel.subscribe(lambda e: seen.append(f"a{e}"))
    channel.subscribe(lambda e: seen.append(f"b{e}"))

    channel.publish(1)

    assert seen == ["a1", "b1"]


def test_unsubscribe_during_publish() -> None:
    channel: EventChannel[int] = EventChannel("test")
    seen: List[str] = []

    def once(event: int) -> None:
        seen.append("once")
        unsubscribe()

    unsubscribe = channel.subscribe(once)
    channel.subscribe(lambda e: seen.append("always"))

    channel.publish(1)
    channel.publish(2)

    assert seen == ["once", "always", "always"]
    assert channel.subscriber_count == 1


def test_failing_subscriber_does_not_block_others() -> None:
    channel: EventChannel[int] = EventChannel("test")
    seen: List[int] = []

    def broken(event: int) -> None:
        raise RuntimeError("boom")

    channel.subscribe(broken)
    channel.subscribe(seen.append)
    channel.publish(7)

    assert seen == [7]


def test_unsubscribe_unknown_is_noop() -> None:
    channel: EventChannel[int] = EventChannel("test")
    channel.unsubscribe(print)
    assert channel.subscriber_count == 0


@pytest.mark.asyncio
async def test_interruptible_sleep() -> None:
    event = asyncio.Event()
    assert await interruptible_sleep(0.01, event) is False
    event.set()
    assert await interruptible_sleep(10, event) is True


@pytest.mark.asyncio
async def test_timer_survives_callback_errors() -> None:
    calls: List[int] = []

    async def tick() -> None:
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first tick fails")

    timer = PeriodicTimer("test", 0.01, tick)
    timer.start()
    await asyncio.sleep(0.2)
    await timer.stop()

    assert len(calls) >= 2
    assert not timer.running
    frozen = len(calls)
    await asyncio.sleep(0.05)
    assert len(calls) == frozen
