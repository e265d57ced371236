"""
Core data models for the audit engine.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple


class Severity(IntEnum):
    """Уровень серьёзности находки. Упорядочен: INFO < ... < CRITICAL."""
    INFO = 0       # Проверка прошла, проблем нет
    LOW = 1        # Незначительная проблема (или проверку не удалось выполнить)
    MEDIUM = 2     # Проблема средней важности
    HIGH = 3       # Серьёзная проблема, требует исправления
    CRITICAL = 4   # Машина открыта для атаки

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        """Принять Severity, число или имя ("high", "HIGH")."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and not value.isdigit():
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown severity: {value!r}") from None
        return cls(int(value))


class Category(Enum):
    """Категория проверки."""
    WINDOWS = "windows"            # Настройки Windows (реестр)
    PERMISSIONS = "permissions"    # Разрешения приложений
    DEVICES = "devices"            # Внешние устройства
    BROWSERS = "browsers"          # Профили браузеров
    PROGRAMS = "programs"          # Установленные программы
    UPDATES = "updates"            # Обновления ОС


class ErrorKind(Enum):
    """Классификация ошибки проверки."""
    RESOURCE_UNAVAILABLE = "resource_unavailable"  # Ключ/файл отсутствует или доступ запрещён
    PARSE_FAILURE = "parse_failure"                # Данные прочитаны, но непригодны
    TIMEOUT = "timeout"                            # Проверка не уложилась в дедлайн
    PARTIAL_DATA_LOSS = "partial_data_loss"        # Не удалось скопировать ресурс перед чтением
    UNKNOWN = "unknown"                            # Всё остальное


@dataclass(frozen=True)
class CheckError:
    """Проверка не смогла завершить инспекцию."""

    result_id: int
    kind: ErrorKind
    message: str
    cause: Optional[BaseException] = field(default=None, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result_id": self.result_id,
            "kind": self.kind.value,
            "message": self.message,
            "cause": f"{type(self.cause).__name__}: {self.cause}" if self.cause else None,
        }


@dataclass(frozen=True)
class CheckOutcome:
    """
    Результат одного запуска проверки.

    Либо находка (findings), либо ошибка (error) — но никогда не оба сразу.
    """

    result_id: int
    severity: Severity
    result_code: int = 0
    findings: Tuple[str, ...] = ()
    error: Optional[CheckError] = None
    duration_ms: float = field(default=0.0, compare=False)

    def __post_init__(self):
        if self.error is not None and self.findings:
            raise ValueError(
                f"Outcome {self.result_id} cannot carry both findings and an error"
            )
        # Allow lists on input, store tuples
        if not isinstance(self.findings, tuple):
            object.__setattr__(self, "findings", tuple(self.findings))

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def summary(self) -> str:
        if self.error is not None:
            return f"[{self.error.kind.value}] {self.error.message}"
        return "; ".join(self.findings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result_id": self.result_id,
            "severity": self.severity.label,
            "result_code": self.result_code,
            "findings": list(self.findings),
            "error": self.error.to_dict() if self.error else None,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class Finding:
    """Строка итогового отчёта."""

    result_id: int
    category: Category
    severity: Severity
    summary: str
    result_code: int = 0
    error_kind: Optional[ErrorKind] = None

    def to_dict(self) -> Dict[str, Any]:
        """Преобразовать в словарь для JSON."""
        return {
            "result_id": self.result_id,
            "category": self.category.value,
            "severity": self.severity.label,
            "summary": self.summary,
            "result_code": self.result_code,
            "error_kind": self.error_kind.value if self.error_kind else None,
        }

    def to_markdown(self) -> str:
        """Преобразовать в markdown для отчёта."""
        severity_emoji = {
            Severity.CRITICAL: "🔴",
            Severity.HIGH: "🟠",
            Severity.MEDIUM: "🟡",
            Severity.LOW: "🟢",
            Severity.INFO: "⚪",
        }

        md = f"### {severity_emoji[self.severity]} [{self.severity.label.upper()}] Check {self.result_id}\n\n"
        md += f"**Category:** {self.category.value}\n\n"
        md += f"**Result code:** {self.result_code}\n\n"
        if self.error_kind:
            md += f"**Could not evaluate:** {self.error_kind.value}\n\n"
        if self.summary:
            md += f"**Details:** {self.summary}\n\n"
        return md


def empty_histogram() -> Dict[Severity, int]:
    return {severity: 0 for severity in Severity}


@dataclass
class AuditReport:
    """Итоговый отчёт аудита."""

    timestamp: datetime
    findings: List[Finding]
    histogram: Dict[Severity, int]
    histogram_by_category: Dict[Category, Dict[Severity, int]]
    overall_rank: Optional[Severity]
    rank_result_id: Optional[int]
    duration_seconds: float = 0.0
    cancelled: bool = False
    omitted_ids: List[int] = field(default_factory=list)

    @property
    def total_findings(self) -> int:
        return len(self.findings)

    def to_dict(self) -> Dict[str, Any]:
        """Преобразовать в словарь для JSON."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "total_findings": self.total_findings,
            "overall_rank": self.overall_rank.label if self.overall_rank is not None else None,
            "rank_result_id": self.rank_result_id,
            "histogram": {s.label: n for s, n in self.histogram.items()},
            "histogram_by_category": {
                category.value: {s.label: n for s, n in hist.items()}
                for category, hist in self.histogram_by_category.items()
            },
            "findings": [f.to_dict() for f in self.findings],
            "duration_seconds": self.duration_seconds,
            "cancelled": self.cancelled,
            "omitted_ids": list(self.omitted_ids),
        }

    def get_findings(self, severity: Severity) -> List[Finding]:
        """Получить находки заданного уровня."""
        return [f for f in self.findings if f.severity == severity]

    def get_unevaluated(self) -> List[Finding]:
        """Проверки, которые не удалось выполнить."""
        return [f for f in self.findings if f.error_kind is not None]
