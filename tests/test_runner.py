"""
Tests for the runner: concurrency bound, timeouts, cancellation, isolation,
determinism.
"""

import asyncio
import threading
import time

import pytest
from hypothesis import given, settings, strategies as st

from conftest import machine_bundle, make_bundle
from hostaudit.accessors import FixtureKeyStore
from hostaudit.catalog import Catalog, build_default_catalog
from hostaudit.core.base_check import BaseCheck
from hostaudit.core.errors import EmptyCatalogError, UnknownCheckError
from hostaudit.core.models import CheckError, CheckOutcome, ErrorKind, Severity
from hostaudit.runner import Runner


class StaticCheck(BaseCheck):
    """Возвращает заранее заданный результат."""

    def __init__(self, result_id, code=0, severity=Severity.INFO, delay=0.0):
        super().__init__(result_id=result_id, name=f"StaticCheck[{result_id}]")
        self.code = code
        self.severities = {code: severity}
        self.delay = delay

    def inspect(self, ctx):
        if self.delay:
            time.sleep(self.delay)
        return self.result(self.code, f"finding {self.result_id}")


class BlockingCheck(BaseCheck):
    """Висит, пока не отпустят release (или до отмены)."""

    def __init__(self, result_id, release: threading.Event, started: threading.Event = None):
        super().__init__(result_id=result_id, name=f"BlockingCheck[{result_id}]")
        self.release = release
        self.started = started or threading.Event()

    def inspect(self, ctx):
        self.started.set()
        self.release.wait(timeout=30)
        ctx.raise_if_cancelled()
        return self.result(0)


class CooperativeCheck(BaseCheck):
    """Ждёт своего токена отмены и честно на него реагирует."""

    def __init__(self, result_id, started: threading.Event):
        super().__init__(result_id=result_id, name=f"CooperativeCheck[{result_id}]")
        self.started = started

    def inspect(self, ctx):
        self.started.set()
        ctx.cancel_event.wait(timeout=30)
        ctx.raise_if_cancelled()
        return self.result(0)


class ConcurrencyProbe(BaseCheck):
    """Считает одновременно выполняемые проверки."""

    def __init__(self, result_id, tracker):
        super().__init__(result_id=result_id, name=f"ConcurrencyProbe[{result_id}]")
        self.tracker = tracker

    def inspect(self, ctx):
        with self.tracker["lock"]:
            self.tracker["running"] += 1
            self.tracker["peak"] = max(self.tracker["peak"], self.tracker["running"])
        time.sleep(0.02)
        with self.tracker["lock"]:
            self.tracker["running"] -= 1
        return self.result(0)


class ForeignUnit:
    """Не-BaseCheck, который бросает исключение из run()."""

    def __init__(self, result_id):
        self.result_id = result_id
        self.name = "ForeignUnit"
        self.category = BaseCheck.category
        self.default_severity = Severity.MEDIUM

    def run(self, ctx):
        raise RuntimeError("escaped")


def empty_bundle():
    return make_bundle(keys=FixtureKeyStore())


# ═══════════════════════════════════════════════════════
# CONTRACT
# ═══════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_run_all_returns_sorted_results():
    catalog = Catalog([StaticCheck(i, delay=0.001 * (10 - i)) for i in range(10, 0, -1)])
    run = await Runner(catalog, empty_bundle(), concurrency_limit=4).run_all()
    assert [r.result_id for r in run.results] == list(range(1, 11))
    assert run.omitted_ids == []
    assert not run.cancelled


@pytest.mark.asyncio
async def test_run_subset():
    catalog = Catalog([StaticCheck(i) for i in range(1, 6)])
    run = await Runner(catalog, empty_bundle()).run_subset([4, 2])
    assert [r.result_id for r in run.results] == [2, 4]


@pytest.mark.asyncio
async def test_run_subset_unknown_id_is_fatal():
    catalog = Catalog([StaticCheck(1)])
    with pytest.raises(UnknownCheckError):
        await Runner(catalog, empty_bundle()).run_subset([1, 2])


@pytest.mark.asyncio
async def test_empty_catalog_is_fatal():
    with pytest.raises(EmptyCatalogError):
        await Runner(Catalog(), empty_bundle()).run_all()


@pytest.mark.asyncio
async def test_empty_subset_is_fatal():
    with pytest.raises(EmptyCatalogError):
        await Runner(Catalog([StaticCheck(1)]), empty_bundle()).run_subset([])


def test_invalid_limits():
    with pytest.raises(ValueError):
        Runner(Catalog(), empty_bundle(), concurrency_limit=0)
    with pytest.raises(ValueError):
        Runner(Catalog(), empty_bundle(), per_check_timeout=0)


@pytest.mark.asyncio
async def test_concurrency_is_bounded():
    tracker = {"lock": threading.Lock(), "running": 0, "peak": 0}
    catalog = Catalog([ConcurrencyProbe(i, tracker) for i in range(1, 21)])
    run = await Runner(catalog, empty_bundle(), concurrency_limit=3).run_all()
    assert len(run.results) == 20
    assert 1 <= tracker["peak"] <= 3


# ═══════════════════════════════════════════════════════
# TIMEOUTS & ISOLATION
# ═══════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_one_blocking_check_among_fifty_times_out():
    release = threading.Event()
    checks = [StaticCheck(i) for i in range(1, 51) if i != 25]
    checks.append(BlockingCheck(25, release))
    catalog = Catalog(checks)

    try:
        run = await Runner(catalog, empty_bundle(), concurrency_limit=10, per_check_timeout=0.5).run_all()
    finally:
        release.set()

    assert len(run.results) == 50
    timeouts = [r for r in run.results if isinstance(r, CheckError) and r.kind is ErrorKind.TIMEOUT]
    normal = [r for r in run.results if isinstance(r, CheckOutcome)]
    assert [r.result_id for r in timeouts] == [25]
    assert len(normal) == 49
    assert run.timed_out_ids == [25]


@pytest.mark.asyncio
async def test_timed_out_check_frees_its_slot():
    release = threading.Event()
    catalog = Catalog([BlockingCheck(1, release), StaticCheck(2)])
    try:
        start = time.perf_counter()
        run = await Runner(catalog, empty_bundle(), concurrency_limit=1, per_check_timeout=0.3).run_all()
        elapsed = time.perf_counter() - start
    finally:
        release.set()
    assert isinstance(run.results[1], CheckOutcome)
    assert elapsed < 5


@pytest.mark.asyncio
async def test_escaping_exception_is_isolated():
    catalog = Catalog([StaticCheck(1), StaticCheck(3)])
    catalog.register(ForeignUnit(2))
    run = await Runner(catalog, empty_bundle()).run_all()
    assert [type(r) for r in run.results] == [CheckOutcome, CheckError, CheckOutcome]
    assert run.results[1].kind is ErrorKind.UNKNOWN
    assert isinstance(run.results[1].cause, RuntimeError)


@pytest.mark.asyncio
async def test_progress_callback():
    seen = []
    catalog = Catalog([StaticCheck(i) for i in range(1, 4)])
    await Runner(catalog, empty_bundle(), progress=lambda done, total, r: seen.append((done, total))).run_all()
    assert sorted(seen) == [(1, 3), (2, 3), (3, 3)]


@pytest.mark.asyncio
async def test_failing_progress_callback_does_not_abort_run():
    def explode(done, total, result):
        raise ValueError("ui went away")

    catalog = Catalog([StaticCheck(i) for i in range(1, 4)])
    run = await Runner(catalog, empty_bundle(), progress=explode).run_all()
    assert len(run.results) == 3


# ═══════════════════════════════════════════════════════
# CANCELLATION
# ═══════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_cancel_returns_partial_results():
    release = threading.Event()
    started = threading.Event()
    checks = [StaticCheck(1), StaticCheck(2), BlockingCheck(3, release, started)]
    checks.extend(StaticCheck(i) for i in range(4, 11))
    runner = Runner(Catalog(checks), empty_bundle(), concurrency_limit=3, per_check_timeout=30)

    async def cancel_when_blocked():
        while not started.is_set():
            await asyncio.sleep(0.01)
        # Let the two quick checks finish first
        await asyncio.sleep(0.1)
        runner.cancel()

    try:
        run, _ = await asyncio.gather(runner.run_all(), cancel_when_blocked())
    finally:
        release.set()

    assert run.cancelled
    completed = [r.result_id for r in run.results]
    assert 3 not in completed
    assert 3 in run.omitted_ids
    assert sorted(completed + run.omitted_ids) == list(range(1, 11))
    assert all(isinstance(r, CheckOutcome) for r in run.results)


@pytest.mark.asyncio
@pytest.mark.parametrize("attempt", range(10))
async def test_cancelled_cooperative_check_is_omitted_not_failed(attempt):
    started = threading.Event()
    checks = [StaticCheck(1), StaticCheck(2), CooperativeCheck(3, started)]
    runner = Runner(Catalog(checks), empty_bundle(), concurrency_limit=3, per_check_timeout=30)
    loop = asyncio.get_running_loop()

    async def cancel_from_another_thread():
        await loop.run_in_executor(None, started.wait, 10)
        await asyncio.sleep(0.05)
        await loop.run_in_executor(None, runner.cancel)

    run, _ = await asyncio.gather(runner.run_all(), cancel_from_another_thread())

    assert run.cancelled
    assert run.omitted_ids == [3]
    assert [r.result_id for r in run.results] == [1, 2]
    assert run.timed_out_ids == []


@pytest.mark.asyncio
async def test_cooperative_check_past_deadline_is_timeout():
    started = threading.Event()
    runner = Runner(Catalog([CooperativeCheck(1, started), StaticCheck(2)]), empty_bundle(), per_check_timeout=0.2)
    run = await runner.run_all()
    assert not run.cancelled
    assert run.timed_out_ids == [1]
    assert run.omitted_ids == []


def test_cancel_while_lock_held_on_same_thread():
    runner = Runner(Catalog([StaticCheck(1)]), empty_bundle())
    returned = threading.Event()

    def cancel_under_lock():
        # A signal handler runs on the thread that may already hold the lock
        with runner._unit_contexts_lock:
            runner.cancel()
        returned.set()

    worker = threading.Thread(target=cancel_under_lock, daemon=True)
    worker.start()
    worker.join(timeout=2)
    assert returned.is_set()


@pytest.mark.asyncio
async def test_cancel_before_run():
    runner = Runner(Catalog([StaticCheck(1), StaticCheck(2)]), empty_bundle())
    runner.cancel()
    run = await runner.run_all()
    assert run.cancelled
    assert run.results == []
    assert run.omitted_ids == [1, 2]


@pytest.mark.asyncio
async def test_runner_is_reusable_after_cancel():
    runner = Runner(Catalog([StaticCheck(1)]), empty_bundle())
    runner.cancel()
    await runner.run_all()
    run = await runner.run_all()
    assert not run.cancelled
    assert len(run.results) == 1


# ═══════════════════════════════════════════════════════
# DETERMINISM
# ═══════════════════════════════════════════════════════

@pytest.mark.asyncio
@settings(max_examples=15, deadline=None)
@given(
    concurrency=st.integers(min_value=1, max_value=12),
    subset=st.lists(st.sampled_from(build_default_catalog().ids), min_size=1, max_size=21, unique=True),
)
async def test_same_fixtures_give_same_results(concurrency, subset):
    catalog = build_default_catalog()
    first = await Runner(catalog, machine_bundle(), concurrency_limit=concurrency).run_subset(subset)
    second = await Runner(catalog, machine_bundle(), concurrency_limit=concurrency).run_subset(subset)
    assert first.results == second.results
    assert [r.result_id for r in first.results] == sorted(subset)


# ═══════════════════════════════════════════════════════
# RESOURCES
# ═══════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_cleanup_calls_registered_resources():
    calls = []

    class Temp:
        def cleanup(self):
            calls.append("cleanup")

    class Conn:
        async def close(self):
            calls.append("close")

    class Faulty:
        def close(self):
            raise OSError("already gone")

    runner = Runner(Catalog([StaticCheck(1)]), empty_bundle())
    for resource in (Temp(), Conn(), Faulty()):
        runner.register_resource(resource)
    await runner.cleanup()
    assert calls == ["cleanup", "close"]
    assert runner.resources == []
