"""
Check catalog: stable result id -> check unit.

The table is built once at startup and is read-only afterwards. A duplicate
id is a startup error, not a per-run one.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Iterable, Iterator, List, Optional

from .core.base_check import BaseCheck
from .core.errors import DuplicateCheckError, UnknownCheckError
from .core.models import Category, Severity
from .checks import (
    AdvertisementCheck,
    AutoLoginCheck,
    BluetoothCheck,
    CheckID,
    ChromiumAdblockerCheck,
    DefenderCheck,
    FirefoxAdblockerCheck,
    FirefoxExtensionsCheck,
    LoginMethodCheck,
    PasswordManagerCheck,
    PermissionCheck,
    RemoteDesktopCheck,
    RemoteRPCCheck,
    ScreenLockCheck,
    SecureBootCheck,
    StartupCheck,
    WindowsOutdatedCheck,
)

if TYPE_CHECKING:
    from .config import AuditConfig

logger = logging.getLogger(__name__)

PERMISSIONS = {
    CheckID.LOCATION: "location",
    CheckID.MICROPHONE: "microphone",
    CheckID.WEBCAM: "webcam",
    CheckID.APPOINTMENTS: "appointments",
    CheckID.CONTACTS: "contacts",
}


@dataclass(frozen=True)
class CatalogEntry:
    """Запись каталога."""

    result_id: int
    category: Category
    check: BaseCheck
    default_severity: Severity

    @property
    def name(self) -> str:
        return self.check.name


class Catalog:
    """
    Реестр проверок по result_id.

    Итерация всегда идёт по возрастанию result_id.
    """

    def __init__(self, checks: Iterable[BaseCheck] = ()):
        self._entries: Dict[int, CatalogEntry] = {}
        for check in checks:
            self.register(check)

    def register(self, check: BaseCheck, default_severity: Optional[Severity] = None) -> CatalogEntry:
        """
        Зарегистрировать проверку.

        Raises:
            DuplicateCheckError: result_id уже занят
        """
        if check.result_id in self._entries:
            existing = self._entries[check.result_id]
            logger.error(
                f"Duplicate result id {check.result_id}: {check.name} conflicts with {existing.name}"
            )
            raise DuplicateCheckError(check.result_id)

        if default_severity is not None:
            # Severity for result codes the check does not map itself
            check.default_severity = default_severity

        entry = CatalogEntry(
            result_id=check.result_id,
            category=check.category,
            check=check,
            default_severity=check.default_severity,
        )
        self._entries[check.result_id] = entry
        logger.debug(f"Registered check {check.result_id}: {check.name}")
        return entry

    def get(self, result_id: int) -> CatalogEntry:
        try:
            return self._entries[result_id]
        except KeyError:
            raise UnknownCheckError([result_id]) from None

    def select(self, result_ids: Iterable[int]) -> List[CatalogEntry]:
        """
        Записи для подмножества id (без повторов, по возрастанию).

        Raises:
            UnknownCheckError: хотя бы одного id нет в каталоге
        """
        wanted = sorted(set(int(i) for i in result_ids))
        unknown = [i for i in wanted if i not in self._entries]
        if unknown:
            raise UnknownCheckError(unknown)
        return [self._entries[i] for i in wanted]

    @property
    def ids(self) -> List[int]:
        return sorted(self._entries)

    def __contains__(self, result_id: int) -> bool:
        return result_id in self._entries

    def __iter__(self) -> Iterator[CatalogEntry]:
        return iter([self._entries[i] for i in self.ids])

    def __len__(self) -> int:
        return len(self._entries)


def build_default_catalog(config: Optional["AuditConfig"] = None) -> Catalog:
    """Каталог со всеми встроенными проверками."""
    min_builds = config.windows_min_builds if config is not None else None

    checks: List[BaseCheck] = [
        BluetoothCheck(),
        AdvertisementCheck(),
        PasswordManagerCheck(),
        RemoteDesktopCheck(),
        DefenderCheck(),
        LoginMethodCheck(),
        WindowsOutdatedCheck(min_builds=min_builds),
        SecureBootCheck(),
        StartupCheck(),
        ChromiumAdblockerCheck("Chrome"),
        ChromiumAdblockerCheck("Edge"),
        FirefoxExtensionsCheck(),
        FirefoxAdblockerCheck(),
        AutoLoginCheck(),
        RemoteRPCCheck(),
        ScreenLockCheck(),
    ]
    checks.extend(PermissionCheck(result_id, permission) for result_id, permission in PERMISSIONS.items())

    catalog = Catalog(checks)
    logger.info(f"Default catalog: {len(catalog)} checks")
    return catalog
