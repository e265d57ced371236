"""
Error taxonomy for the audit engine.

Accessor and check faults are classified by ``ErrorKind`` and end up as
per-check ``CheckError`` values. Catalog and runner faults are fatal to the
whole run and are raised to the caller.
"""

from typing import Optional

from .models import ErrorKind


class AuditError(Exception):
    """Базовое исключение системы аудита."""
    pass


class AccessorError(AuditError):
    """Ошибка при обращении к ресурсу (реестр, файл, версия ОС)."""

    kind = ErrorKind.UNKNOWN

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class ResourceUnavailable(AccessorError):
    """Ресурс отсутствует или доступ запрещён."""

    kind = ErrorKind.RESOURCE_UNAVAILABLE


class KeyNotFound(ResourceUnavailable):
    """Ключ (или сегмент пути) не найден."""
    pass


class ValueNotFound(ResourceUnavailable):
    """Значение с таким именем отсутствует в ключе."""
    pass


class AccessDenied(ResourceUnavailable):
    """Нет прав на чтение ресурса."""
    pass


class ParseFailure(AccessorError):
    """Данные получены, но их нельзя использовать."""

    kind = ErrorKind.PARSE_FAILURE


class PartialDataLoss(AccessorError):
    """Не удалось сделать копию ресурса перед чтением."""

    kind = ErrorKind.PARTIAL_DATA_LOSS


class CheckCancelled(AuditError):
    """Проверка была отменена (таймаут или отмена всего запуска)."""
    pass


# === Fatal (run-level) errors ===

class CatalogError(AuditError):
    """Ошибка каталога проверок. Фатальна для запуска."""
    pass


class DuplicateCheckError(CatalogError):
    """Два элемента каталога с одинаковым result_id."""

    def __init__(self, result_id: int):
        super().__init__(f"Check with result id {result_id} is already registered")
        self.result_id = result_id


class UnknownCheckError(CatalogError):
    """Запрошен result_id, которого нет в каталоге."""

    def __init__(self, result_ids):
        ids = ", ".join(str(i) for i in sorted(result_ids))
        super().__init__(f"Unknown check ids: {ids}")
        self.result_ids = sorted(result_ids)


class EmptyCatalogError(CatalogError):
    """Нечего запускать."""
    pass
