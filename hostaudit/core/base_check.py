"""
Base class for check units.
"""

import dataclasses
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Dict, FrozenSet, Optional, Union

from ..accessors.base import AccessorBundle, Capability, FileSystem, KeyStore, VersionProbe
from .errors import AccessorError, CheckCancelled, ResourceUnavailable
from .models import Category, CheckError, CheckOutcome, ErrorKind, Severity

logger = logging.getLogger(__name__)

CheckResult = Union[CheckOutcome, CheckError]

# Why a check was asked to stop
CANCEL_RUN = "run"
CANCEL_DEADLINE = "deadline"


class CheckContext:
    """
    Всё, что получает проверка при запуске.

    Accessor'ы разделяются всеми проверками запуска; cancel_event —
    собственный для каждой проверки (выставляется при таймауте или отмене).
    """

    def __init__(self, accessors: AccessorBundle, cancel_event: Optional[threading.Event] = None):
        self.accessors = accessors
        self.cancel_event = cancel_event or threading.Event()
        # CANCEL_RUN or CANCEL_DEADLINE once cancel() was called
        self.cancel_reason: Optional[str] = None

    @property
    def keys(self) -> KeyStore:
        return self._require(Capability.KEYS)

    @property
    def files(self) -> FileSystem:
        return self._require(Capability.FILES)

    @property
    def version(self) -> VersionProbe:
        return self._require(Capability.VERSION)

    def _require(self, capability: Capability):
        if not self.accessors.provides(capability):
            raise ResourceUnavailable(f"No {capability.value} accessor in this run")
        return getattr(self.accessors, capability.value)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self, reason: str):
        """Попросить проверку остановиться. Первая причина сохраняется."""
        if self.cancel_reason is None:
            self.cancel_reason = reason
        self.cancel_event.set()

    @property
    def stopped_by_run(self) -> bool:
        return self.cancel_reason == CANCEL_RUN

    def raise_if_cancelled(self):
        """Вызывать между обращениями к ресурсам: потоки не прерываются принудительно."""
        if self.cancel_event.is_set():
            raise CheckCancelled("Check was cancelled")


class BaseCheck(ABC):
    """
    Базовый класс для всех проверок.

    Предоставляет:
    - Шаблон метода run()
    - Классификацию ошибок (проверка никогда не выпускает исключение наружу)
    - Логирование

    Подкласс задаёт result_id, category, requires, severities и
    реализует inspect().
    """

    result_id: int = 0
    category: Category = Category.WINDOWS
    requires: FrozenSet[Capability] = frozenset()
    # result_code -> severity
    severities: Dict[int, Severity] = {}
    default_severity: Severity = Severity.MEDIUM

    def __init__(self, result_id: Optional[int] = None, name: Optional[str] = None):
        """
        Args:
            result_id: Переопределить ID (для параметризованных проверок)
            name: Имя проверки (для логирования и отчётов)
        """
        self.result_id = int(result_id if result_id is not None else type(self).result_id)
        self.name = name or type(self).__name__
        self.logger = logging.getLogger(f"hostaudit.{self.name}")

    def run(self, ctx: CheckContext) -> CheckResult:
        """
        Запустить проверку с классификацией ошибок.

        Returns:
            CheckOutcome или CheckError — ровно одно значение
        """
        self.logger.debug(f"Starting {self.name}...")
        start_time = time.perf_counter()

        missing = ctx.accessors.missing(self.requires)
        if missing:
            names = ", ".join(c.value for c in missing)
            self.logger.warning(f"{self.name} skipped: missing accessors {names}")
            return self.error(ErrorKind.RESOURCE_UNAVAILABLE, f"Missing accessors: {names}")

        try:
            result = self.inspect(ctx)

        except CheckCancelled as e:
            self.logger.info(f"{self.name} cancelled")
            return self.error(ErrorKind.TIMEOUT, str(e), cause=e)

        except AccessorError as e:
            self.logger.info(f"{self.name} could not complete: {e.message}")
            return self.error(e.kind, e.message, cause=e)

        except Exception as e:
            self.logger.error(f"{self.name} failed with exception: {e}", exc_info=True)
            return self.error(ErrorKind.UNKNOWN, f"{type(e).__name__}: {e}", cause=e)

        if not isinstance(result, (CheckOutcome, CheckError)) or result.result_id != self.result_id:
            self.logger.error(f"{self.name} returned an invalid result: {result!r}")
            return self.error(ErrorKind.UNKNOWN, f"Invalid result from {self.name}")

        duration_ms = (time.perf_counter() - start_time) * 1000
        if isinstance(result, CheckOutcome):
            result = dataclasses.replace(result, duration_ms=duration_ms)
            self.logger.debug(
                f"Completed {self.name}: code={result.result_code}, "
                f"severity={result.severity.label}, duration={duration_ms:.2f}ms"
            )
        return result

    @abstractmethod
    def inspect(self, ctx: CheckContext) -> CheckResult:
        """
        Выполнить инспекцию (реализуется в подклассах).

        Можно бросать AccessorError — run() классифицирует её.
        """

    def severity_for(self, result_code: int) -> Severity:
        return self.severities.get(result_code, self.default_severity)

    def result(self, result_code: int, *findings: str) -> CheckOutcome:
        """Удобный метод для создания CheckOutcome."""
        return CheckOutcome(
            result_id=self.result_id,
            severity=self.severity_for(result_code),
            result_code=result_code,
            findings=tuple(findings),
        )

    def error(self, kind: ErrorKind, message: str, cause: Optional[BaseException] = None) -> CheckError:
        """Удобный метод для создания CheckError."""
        return CheckError(result_id=self.result_id, kind=kind, message=message, cause=cause)

    def __repr__(self) -> str:
        return f"<{self.name} id={self.result_id}>"


class RegistryCheck(BaseCheck):
    """Проверка, читающая только реестр."""

    requires = frozenset({Capability.KEYS})
    category = Category.WINDOWS


class FileCheck(BaseCheck):
    """Проверка, читающая только файлы."""

    requires = frozenset({Capability.FILES})


class VersionCheck(BaseCheck):
    """Проверка версии ОС."""

    requires = frozenset({Capability.VERSION})
    category = Category.UPDATES
