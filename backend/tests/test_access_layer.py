import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from servicehub.clients.access_layer import Liveness, ResilientAccessLayer
from servicehub.errors import ConflictError, TransientError, ValidationError


def _layer(**kwargs):
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    return ResilientAccessLayer(retry_delay=0.5, sleep=fake_sleep, **kwargs), delays


def test_transient_failures_exhaust_attempt_budget():
    layer, delays = _layer()
    calls = []

    async def always_transient():
        calls.append(1)
        raise TransientError("consistency proof failed")

    with pytest.raises(TransientError):
        asyncio.run(layer.execute_with_retry(always_transient, "load-bookings", max_attempts=3))

    assert len(calls) == 3
    assert delays == [0.5, 1.0]


@pytest.mark.parametrize("error", [ValidationError("bad"), ConflictError("taken"), RuntimeError("boom")])
def test_non_transient_errors_are_not_retried(error):
    layer, delays = _layer()
    calls = []

    async def failing():
        calls.append(1)
        raise error

    with pytest.raises(type(error)):
        asyncio.run(layer.execute_with_retry(failing, "accept-b_1", max_attempts=3))

    assert len(calls) == 1
    assert delays == []


def test_recovers_after_transient_failure():
    layer, delays = _layer()
    outcomes = [TransientError("busy"), TransientError("busy"), "ok"]

    async def flaky():
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    assert asyncio.run(layer.execute_with_retry(flaky, "load-bookings")) == "ok"
    assert delays == [0.5, 1.0]


def test_late_result_discarded_once_caller_is_gone():
    liveness = Liveness()
    layer, _ = _layer(liveness=liveness)

    async def slow():
        liveness.dispose()
        return ["booking"]

    assert asyncio.run(layer.execute_with_retry(slow, "load-bookings")) is None
    assert not layer.is_operation_in_progress("load-bookings")


def test_late_error_discarded_once_caller_is_gone():
    liveness = Liveness()
    layer, _ = _layer(liveness=liveness)

    async def slow_failure():
        liveness.dispose()
        raise ValidationError("too late to matter")

    assert asyncio.run(layer.execute_with_retry(slow_failure, "cancel-b_1")) is None


def test_no_retry_after_caller_leaves_during_backoff():
    liveness = Liveness()
    calls = []

    async def leave_while_sleeping(seconds):
        liveness.dispose()

    layer = ResilientAccessLayer(liveness=liveness, retry_delay=0.5, sleep=leave_while_sleeping)

    async def transient():
        calls.append(1)
        raise TransientError("busy")

    assert asyncio.run(layer.execute_with_retry(transient, "load-bookings")) is None
    assert len(calls) == 1


def test_operation_is_skipped_when_caller_already_gone():
    liveness = Liveness()
    liveness.dispose()
    layer, _ = _layer(liveness=liveness)
    calls = []

    async def operation():
        calls.append(1)
        return 1

    assert asyncio.run(layer.execute_with_retry(operation, "x")) is None
    assert calls == []


def test_in_flight_label_tracked_until_settled():
    layer, _ = _layer()
    observed = []

    async def operation():
        observed.append(layer.is_operation_in_progress("accept-b_1"))
        raise ValidationError("nope")

    with pytest.raises(ValidationError):
        asyncio.run(layer.execute_with_retry(operation, "accept-b_1"))

    assert observed == [True]
    assert layer.is_operation_in_progress("accept-b_1") is False
    assert "accept-b_1" not in layer.in_flight


def test_concurrent_operations_with_same_label():
    layer = ResilientAccessLayer(retry_delay=0)

    async def scenario():
        release_first = asyncio.Event()
        release_second = asyncio.Event()

        async def wait_for(event):
            await event.wait()
            return "done"

        first = asyncio.create_task(layer.execute_with_retry(lambda: wait_for(release_first), "load-bookings"))
        second = asyncio.create_task(layer.execute_with_retry(lambda: wait_for(release_second), "load-bookings"))
        await asyncio.sleep(0)
        release_first.set()
        await first
        still_running = layer.is_operation_in_progress("load-bookings")
        release_second.set()
        await second
        return still_running, layer.is_operation_in_progress("load-bookings")

    assert asyncio.run(scenario()) == (True, False)


def test_invalid_attempt_budget():
    layer, _ = _layer()

    async def operation():
        return 1

    with pytest.raises(ValueError):
        asyncio.run(layer.execute_with_retry(operation, "x", max_attempts=0))


def test_cache_reads_through_once_and_skips_none():
    layer, _ = _layer()
    fetches = []

    async def fetch_profile():
        fetches.append("prov")
        return {"name": "Ada"}

    async def fetch_missing():
        fetches.append("missing")
        return None

    async def scenario():
        first = await layer.get_cached("profile:prov", fetch_profile)
        second = await layer.get_cached("profile:prov", fetch_profile)
        await layer.get_cached("profile:missing", fetch_missing)
        await layer.get_cached("profile:missing", fetch_missing)
        layer.clear_cache()
        await layer.get_cached("profile:prov", fetch_profile)
        return first, second

    first, second = asyncio.run(scenario())
    assert first == second == {"name": "Ada"}
    assert fetches == ["prov", "missing", "missing", "prov"]
