"""
Check runner: bounded-concurrency execution of catalog entries.

Features:
- One thread per running check, concurrency capped by a semaphore
- Per-check timeout: the check is abandoned, never killed
- Run-level cancellation with partial results
- Failure isolation between checks
- Resource cleanup
"""

import asyncio
import inspect
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional

from .accessors.base import AccessorBundle
from .catalog import Catalog, CatalogEntry
from .core.base_check import CANCEL_DEADLINE, CANCEL_RUN, CheckContext, CheckResult
from .core.errors import EmptyCatalogError
from .core.models import CheckError, CheckOutcome, ErrorKind

if TYPE_CHECKING:
    from .config import AuditConfig

logger = logging.getLogger(__name__)

# (done, total, result) -> None
ProgressCallback = Callable[[int, int, CheckResult], None]


@dataclass
class RunResult:
    """Всё, что вернул один запуск."""

    results: List[CheckResult]
    omitted_ids: List[int] = field(default_factory=list)
    cancelled: bool = False
    duration_seconds: float = 0.0

    @property
    def timed_out_ids(self) -> List[int]:
        return [
            r.result_id for r in self.results
            if isinstance(r, CheckError) and r.kind is ErrorKind.TIMEOUT
        ]


def _set_result(future: asyncio.Future, result: CheckResult):
    # The future is already cancelled when the check was abandoned
    if not future.done():
        future.set_result(result)


class Runner:
    """
    Исполнитель проверок каталога.

    Accessor'ы, лимит параллельности и таймаут задаются при создании и
    не читаются из глобального состояния.
    """

    def __init__(
        self,
        catalog: Catalog,
        accessors: AccessorBundle,
        concurrency_limit: int = 8,
        per_check_timeout: float = 10.0,
        progress: Optional[ProgressCallback] = None,
    ):
        """
        Args:
            catalog: Каталог проверок
            accessors: Набор accessor'ов (live или fixture) на весь запуск
            concurrency_limit: Максимум одновременно выполняемых проверок
            per_check_timeout: Дедлайн одной проверки в секундах
            progress: Вызывается после каждой завершённой проверки
        """
        if concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be >= 1, got {concurrency_limit}")
        if per_check_timeout <= 0:
            raise ValueError(f"per_check_timeout must be > 0, got {per_check_timeout}")

        self.catalog = catalog
        self.accessors = accessors
        self.concurrency_limit = concurrency_limit
        self.per_check_timeout = per_check_timeout
        self.progress = progress
        self.resources = []  # Список ресурсов для cleanup

        self._cancel_requested = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._cancel_event: Optional[asyncio.Event] = None
        self._unit_contexts: Dict[int, CheckContext] = {}
        # Reentrant: cancel() may run from a signal handler on the loop thread
        self._unit_contexts_lock = threading.RLock()

    @classmethod
    def from_config(
        cls,
        catalog: Catalog,
        accessors: AccessorBundle,
        config: "AuditConfig",
        progress: Optional[ProgressCallback] = None,
    ) -> "Runner":
        return cls(
            catalog,
            accessors,
            concurrency_limit=config.concurrency_limit,
            per_check_timeout=config.per_check_timeout_seconds,
            progress=progress,
        )

    # ═══════════════════════════════════════════════════════
    # PUBLIC API
    # ═══════════════════════════════════════════════════════

    async def run_all(self) -> RunResult:
        """
        Запустить все проверки каталога.

        Raises:
            EmptyCatalogError: каталог пуст
        """
        return await self._execute(list(self.catalog))

    async def run_subset(self, result_ids: Iterable[int]) -> RunResult:
        """
        Запустить только указанные проверки.

        Raises:
            UnknownCheckError: id нет в каталоге
            EmptyCatalogError: список id пуст
        """
        return await self._execute(self.catalog.select(result_ids))

    def cancel(self):
        """
        Отменить текущий запуск.

        Новые проверки не запускаются; run_*() возвращает только
        завершённые результаты. Можно вызывать из другого потока.
        """
        logger.info("Cancellation requested")
        self._cancel_requested = True

        with self._unit_contexts_lock:
            for ctx in self._unit_contexts.values():
                ctx.cancel(CANCEL_RUN)

        loop, event = self._loop, self._cancel_event
        if loop is None or event is None:
            return
        # Safe from other threads and from signal handlers
        try:
            loop.call_soon_threadsafe(event.set)
        except RuntimeError:
            logger.debug("Event loop already closed, nothing to cancel")

    # ═══════════════════════════════════════════════════════
    # EXECUTION
    # ═══════════════════════════════════════════════════════

    async def _execute(self, entries: List[CatalogEntry]) -> RunResult:
        if not entries:
            raise EmptyCatalogError("No checks to run")

        total = len(entries)
        logger.info(
            f"Running {total} checks (concurrency={self.concurrency_limit}, "
            f"timeout={self.per_check_timeout}s)..."
        )
        start_time = time.perf_counter()

        self._loop = asyncio.get_running_loop()
        self._cancel_event = asyncio.Event()
        if self._cancel_requested:
            self._cancel_event.set()

        semaphore = asyncio.Semaphore(self.concurrency_limit)
        completed: Dict[int, CheckResult] = {}
        tasks = [
            asyncio.ensure_future(self._dispatch(entry, semaphore, completed, total))
            for entry in entries
        ]
        cancel_waiter = asyncio.ensure_future(self._cancel_event.wait())

        try:
            pending = set(tasks)
            while pending:
                done, _ = await asyncio.wait(pending | {cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
                pending -= done
                if cancel_waiter in done:
                    break
            cancelled = self._cancel_event.is_set()

            if pending:
                logger.info(f"Run cancelled, dropping {len(pending)} unfinished checks")
                for task in pending:
                    task.cancel()
                # Cancelled tasks never block on their abandoned threads
                await asyncio.gather(*pending, return_exceptions=True)

        finally:
            cancel_waiter.cancel()
            await asyncio.gather(cancel_waiter, return_exceptions=True)
            self._cancel_requested = False
            self._cancel_event = None
            self._loop = None

        results = [completed[entry.result_id] for entry in entries if entry.result_id in completed]
        results.sort(key=lambda r: r.result_id)
        omitted = sorted(entry.result_id for entry in entries if entry.result_id not in completed)
        duration = time.perf_counter() - start_time

        failed = sum(1 for r in results if isinstance(r, CheckError))
        logger.info(
            f"Run finished in {duration:.2f}s: {len(results)} completed "
            f"({failed} could not evaluate), {len(omitted)} omitted"
        )
        return RunResult(results=results, omitted_ids=omitted, cancelled=cancelled, duration_seconds=duration)

    async def _dispatch(
        self,
        entry: CatalogEntry,
        semaphore: asyncio.Semaphore,
        completed: Dict[int, CheckResult],
        total: int,
    ):
        async with semaphore:
            if self._cancel_event is not None and self._cancel_event.is_set():
                return
            result = await self._run_unit(entry)

        if result is None:
            # Interrupted by cancel(): reported as omitted, not as failed
            return
        completed[entry.result_id] = result
        self._report_progress(len(completed), total, result)

    async def _run_unit(self, entry: CatalogEntry) -> Optional[CheckResult]:
        """
        Запустить одну проверку в собственном потоке и дождаться её с таймаутом.

        Returns:
            Результат проверки или None, если её прервала отмена всего запуска
        """
        ctx = CheckContext(self.accessors)
        with self._unit_contexts_lock:
            self._unit_contexts[entry.result_id] = ctx
            if self._cancel_requested:
                ctx.cancel(CANCEL_RUN)

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        thread = threading.Thread(
            target=self._worker,
            args=(entry, ctx, loop, future),
            name=f"hostaudit-check-{entry.result_id}",
            daemon=True,
        )

        try:
            thread.start()
            result = await asyncio.wait_for(future, timeout=self.per_check_timeout)

        except asyncio.TimeoutError:
            # Abandon the thread; the check sees the event at its next cancellation point
            ctx.cancel(CANCEL_DEADLINE)
            if ctx.stopped_by_run:
                return None
            logger.warning(f"Check {entry.name} timed out after {self.per_check_timeout}s, abandoned")
            return CheckError(
                result_id=entry.result_id,
                kind=ErrorKind.TIMEOUT,
                message=f"Check exceeded its {self.per_check_timeout}s deadline",
            )

        except asyncio.CancelledError:
            ctx.cancel(CANCEL_RUN)
            raise

        finally:
            with self._unit_contexts_lock:
                self._unit_contexts.pop(entry.result_id, None)

        if ctx.stopped_by_run and isinstance(result, CheckError):
            logger.debug(f"Check {entry.name} stopped by run cancellation, omitted")
            return None
        return result

    def _worker(self, entry: CatalogEntry, ctx: CheckContext, loop: asyncio.AbstractEventLoop,
                future: asyncio.Future):
        try:
            result = entry.check.run(ctx)
        except Exception as e:
            # BaseCheck.run classifies everything itself; this covers foreign units
            logger.error(f"Check {entry.name} raised past its boundary: {e}", exc_info=True)
            result = CheckError(
                result_id=entry.result_id,
                kind=ErrorKind.UNKNOWN,
                message=f"{type(e).__name__}: {e}",
                cause=e,
            )

        if not isinstance(result, (CheckOutcome, CheckError)) or result.result_id != entry.result_id:
            logger.error(f"Check {entry.name} returned an invalid result: {result!r}")
            result = CheckError(
                result_id=entry.result_id,
                kind=ErrorKind.UNKNOWN,
                message=f"Invalid result from {entry.name}",
            )

        try:
            loop.call_soon_threadsafe(_set_result, future, result)
        except RuntimeError:
            logger.debug(f"Check {entry.name} finished after its run ended, result dropped")

    def _report_progress(self, done: int, total: int, result: CheckResult):
        if self.progress is None:
            return
        try:
            self.progress(done, total, result)
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}", exc_info=True)

    # ═══════════════════════════════════════════════════════
    # RESOURCES
    # ═══════════════════════════════════════════════════════

    def register_resource(self, resource: Any):
        """
        Зарегистрировать ресурс для cleanup.

        Args:
            resource: Объект с методом cleanup() или close()
        """
        self.resources.append(resource)

    async def cleanup(self):
        """Очистить все зарегистрированные ресурсы."""
        logger.info("Cleaning up resources...")

        for resource in self.resources:
            try:
                for method_name in ("cleanup", "close"):
                    method = getattr(resource, method_name, None)
                    if method is None:
                        continue
                    if inspect.iscoroutinefunction(method):
                        await method()
                    else:
                        method()
                    break

            except Exception as e:
                logger.warning(f"Error cleaning up resource {resource}: {e}")

        self.resources.clear()
        logger.info("Cleanup complete")
