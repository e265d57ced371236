"""
Capability interfaces for the resources a check may touch.

Three capabilities:
- KeyStore: hierarchical key/value store (the Windows registry)
- FileSystem: files and directories (browser profiles, program folders)
- VersionProbe: OS version triple

Each has exactly two implementations: live (``accessors.live``) and
fixture (``accessors.fixture``). The choice is made once, when the
AccessorBundle is built, and never inside a check.
"""

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from ..core.errors import AccessorError, ResourceUnavailable

logger = logging.getLogger(__name__)

# Returned by check_key() when a value is absent or the key cannot be opened
NOT_FOUND = "-1"


class Capability(Enum):
    """Ресурс, который нужен проверке."""
    KEYS = "keys"
    FILES = "files"
    VERSION = "version"


class Hive(Enum):
    """Корни хранилища ключей."""
    CURRENT_USER = "HKEY_CURRENT_USER"
    LOCAL_MACHINE = "HKEY_LOCAL_MACHINE"
    USERS = "HKEY_USERS"


class Access(Enum):
    READ = "read"
    WRITE = "write"


class ValueType(Enum):
    """Тип значения в ключе."""
    STRING = "string"
    EXPAND_STRING = "expand_string"
    BINARY = "binary"
    DWORD = "dword"
    QWORD = "qword"
    MULTI_STRING = "multi_string"
    OTHER = "other"


@dataclass(frozen=True)
class KeyInfo:
    """Метаданные открытого ключа."""
    subkey_count: int
    value_count: int
    max_subkey_len: int = 0
    max_value_name_len: int = 0
    last_write_time: Optional[datetime] = None


@dataclass(frozen=True)
class FileInfo:
    """Метаданные открытого файла."""
    name: str
    size: int
    modified: Optional[datetime] = None
    is_dir: bool = False


@dataclass(frozen=True)
class OSVersion:
    """Версия ОС: major.minor.build."""
    major: int
    minor: int
    build: int

    @property
    def is_windows_11(self) -> bool:
        # Windows 11 still reports major version 10
        return self.major == 10 and self.build >= 22000

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.build}"


class Handle:
    """Непрозрачная ссылка на открытый ключ или файл."""

    __slots__ = ("handle_id", "path")

    def __init__(self, handle_id: int, path: str):
        self.handle_id = handle_id
        self.path = path

    def __repr__(self) -> str:
        return f"<{type(self).__name__} #{self.handle_id} {self.path!r}>"


class KeyHandle(Handle):
    __slots__ = ()


class FileHandle(Handle):
    __slots__ = ()


class HandleTable:
    """
    Таблица открытых хендлов одного accessor'а.

    Потокобезопасна: одна таблица разделяется всеми проверками запуска,
    но каждый хендл принадлежит ровно одной проверке.
    """

    def __init__(self, handle_type=Handle):
        self._handle_type = handle_type
        self._ids = itertools.count(1)
        self._open: Dict[int, Any] = {}
        self._lock = threading.Lock()

    def register(self, native: Any, path: str) -> Handle:
        with self._lock:
            handle = self._handle_type(next(self._ids), path)
            self._open[handle.handle_id] = native
        return handle

    def resolve(self, handle: Handle) -> Any:
        with self._lock:
            try:
                return self._open[handle.handle_id]
            except (KeyError, AttributeError):
                raise ResourceUnavailable(f"Handle is closed or invalid: {handle!r}") from None

    def release(self, handle: Handle) -> Tuple[bool, Any]:
        """Убрать хендл из таблицы. Возвращает (был_открыт, native)."""
        with self._lock:
            handle_id = getattr(handle, "handle_id", None)
            if handle_id not in self._open:
                return False, None
            return True, self._open.pop(handle_id)

    @property
    def open_count(self) -> int:
        with self._lock:
            return len(self._open)


KeyParent = Union[Hive, KeyHandle]


class KeyStore(ABC):
    """Иерархическое хранилище ключей (реестр)."""

    @abstractmethod
    def open(self, parent: KeyParent, path: str, access: Access = Access.READ) -> KeyHandle:
        """Открыть ключ относительно корня или уже открытого ключа."""

    @abstractmethod
    def read_string(self, handle: KeyHandle, name: str) -> Tuple[str, ValueType]:
        ...

    @abstractmethod
    def read_binary(self, handle: KeyHandle, name: str) -> Tuple[bytes, ValueType]:
        ...

    @abstractmethod
    def read_integer(self, handle: KeyHandle, name: str) -> Tuple[int, ValueType]:
        ...

    @abstractmethod
    def enumerate_value_names(self, handle: KeyHandle, limit: int = 0) -> List[str]:
        """Имена значений ключа. limit <= 0 — все."""

    @abstractmethod
    def enumerate_children(self, handle: KeyHandle, limit: int = 0) -> List[str]:
        """Имена подключей. limit <= 0 — все."""

    @abstractmethod
    def stat(self, handle: KeyHandle) -> KeyInfo:
        ...

    @abstractmethod
    def close(self, handle: KeyHandle) -> bool:
        """
        Закрыть ключ. Никогда не бросает исключений.

        Returns:
            True если ключ был закрыт сейчас, False если он уже был закрыт
            или хендл невалиден.
        """

    @property
    @abstractmethod
    def open_handles(self) -> int:
        """Количество незакрытых хендлов."""

    @contextmanager
    def scoped(self, parent: KeyParent, path: str, access: Access = Access.READ) -> Iterator[KeyHandle]:
        """Открыть ключ и гарантированно закрыть его на выходе из блока."""
        handle = self.open(parent, path, access)
        try:
            yield handle
        finally:
            self.close(handle)


class FileSystem(ABC):
    """Файлы и каталоги."""

    @abstractmethod
    def open(self, path: str, mode: str = "rb") -> FileHandle:
        ...

    @abstractmethod
    def read(self, handle: FileHandle, size: int = -1) -> bytes:
        ...

    @abstractmethod
    def write(self, handle: FileHandle, data: bytes) -> int:
        ...

    @abstractmethod
    def stat(self, handle: FileHandle) -> FileInfo:
        ...

    @abstractmethod
    def close(self, handle: FileHandle) -> bool:
        """Закрыть файл. Та же семантика, что у KeyStore.close()."""

    @abstractmethod
    def list_dir(self, path: str) -> List[str]:
        """Имена элементов каталога (отсортированы)."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        ...

    @abstractmethod
    def is_dir(self, path: str) -> bool:
        ...

    @abstractmethod
    def snapshot(self, path: str) -> str:
        """
        Скопировать файл во временное место перед чтением
        (например, БД, заблокированную браузером).

        Raises:
            PartialDataLoss: копирование не удалось
        """

    @abstractmethod
    def home_dir(self) -> str:
        ...

    @abstractmethod
    def join(self, *parts: str) -> str:
        ...

    @property
    @abstractmethod
    def open_handles(self) -> int:
        ...

    @contextmanager
    def scoped(self, path: str, mode: str = "rb") -> Iterator[FileHandle]:
        handle = self.open(path, mode)
        try:
            yield handle
        finally:
            self.close(handle)

    def read_all(self, path: str) -> bytes:
        """Прочитать файл целиком."""
        with self.scoped(path, "rb") as handle:
            return self.read(handle)

    def cleanup(self):
        """Освободить ресурсы запуска (снимки файлов)."""


class VersionProbe(ABC):
    """Версия операционной системы."""

    @abstractmethod
    def get_version(self) -> OSVersion:
        ...


@dataclass(frozen=True)
class AccessorBundle:
    """
    Набор accessor'ов одного запуска.

    Разделяется всеми проверками запуска только на чтение.
    """

    keys: Optional[KeyStore] = None
    files: Optional[FileSystem] = None
    version: Optional[VersionProbe] = None

    def provides(self, capability: Capability) -> bool:
        # Capability values match the attribute names
        return getattr(self, capability.value) is not None

    def missing(self, capabilities) -> List[Capability]:
        return sorted(
            (c for c in capabilities if not self.provides(c)),
            key=lambda c: c.value,
        )

    @classmethod
    def live(cls) -> "AccessorBundle":
        """Accessor'ы реальной машины."""
        from .live import LiveFileSystem, LiveKeyStore, LiveVersionProbe

        return cls(
            keys=LiveKeyStore(),
            files=LiveFileSystem(),
            version=LiveVersionProbe(),
        )


def check_key(store: KeyStore, key: KeyParent, name: str, path: Optional[str] = None) -> str:
    """
    Прочитать строковое значение или вернуть NOT_FOUND ("-1").

    Если передан path — ключ открывается (и закрывается) здесь же; ошибка
    открытия тоже даёт NOT_FOUND. Значение "-1", реально лежащее в ключе,
    от отсутствия не отличить: используйте find_string(), если это важно.
    """
    value = find_string(store, key, name, path)
    return NOT_FOUND if value is None else value


def find_string(store: KeyStore, key: KeyParent, name: str, path: Optional[str] = None) -> Optional[str]:
    """То же, что check_key(), но отсутствие — это None."""
    try:
        if path is None:
            value, _ = store.read_string(key, name)
            return value
        with store.scoped(key, path) as handle:
            value, _ = store.read_string(handle, name)
            return value
    except AccessorError as e:
        logger.debug(f"Value {name!r} not available: {e}")
        return None
