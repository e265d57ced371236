"""
In-memory fixture accessors.

Build literal key trees, file maps and a version triple directly in test
code; the engine reads them through the same interfaces as the live
machine. Fixture data is never mutated: file writes land in an overlay.
"""

import logging
import posixpath
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from ..core.errors import (
    KeyNotFound,
    ParseFailure,
    PartialDataLoss,
    ResourceUnavailable,
    ValueNotFound,
)
from .base import (
    Access,
    FileHandle,
    FileInfo,
    FileSystem,
    HandleTable,
    Hive,
    KeyHandle,
    KeyInfo,
    KeyParent,
    KeyStore,
    OSVersion,
    ValueType,
    VersionProbe,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════
# KEY STORE
# ═══════════════════════════════════════════════════════

@dataclass
class FixtureKey:
    """
    Узел дерева ключей.

    error — исключение, которое бросается при открытии этого ключа.
    enumeration_error — исключение при перечислении значений/подключей.
    """

    name: str
    string_values: Dict[str, str] = field(default_factory=dict)
    binary_values: Dict[str, bytes] = field(default_factory=dict)
    integer_values: Dict[str, int] = field(default_factory=dict)
    children: List["FixtureKey"] = field(default_factory=list)
    error: Optional[BaseException] = None
    enumeration_error: Optional[BaseException] = None
    last_write_time: Optional[datetime] = None

    @classmethod
    def at(cls, path: str, **leaf) -> "FixtureKey":
        """
        Построить цепочку ключей по пути.

        FixtureKey.at(r"SOFTWARE\\Foo\\Bar", integer_values={"Enabled": 1})
        вернёт ключ SOFTWARE → Foo → Bar, где Bar несёт значения.
        """
        segments = _split_key_path(path)
        if not segments:
            raise ValueError("Fixture key path must not be empty")
        node = cls(name=segments[-1], **leaf)
        for segment in reversed(segments[:-1]):
            node = cls(name=segment, children=[node])
        return node

    def child(self, name: str) -> Optional["FixtureKey"]:
        wanted = name.casefold()
        for child in self.children:
            if child.name.casefold() == wanted:
                return child
        return None

    def value_names(self) -> List[str]:
        names: List[str] = []
        seen = set()
        for mapping in (self.string_values, self.binary_values, self.integer_values):
            for name in mapping:
                if name not in seen:
                    seen.add(name)
                    names.append(name)
        return names


def _split_key_path(path: str) -> List[str]:
    return [segment for segment in path.split("\\") if segment]


def merge_keys(keys: Iterable[FixtureKey]) -> List[FixtureKey]:
    """
    Слить соседние ключи с одинаковыми именами (без учёта регистра).

    Возвращает новые узлы; исходные не изменяются.
    """
    merged: Dict[str, FixtureKey] = {}
    for key in keys:
        folded = key.name.casefold()
        existing = merged.get(folded)
        if existing is None:
            merged[folded] = FixtureKey(
                name=key.name,
                string_values=dict(key.string_values),
                binary_values=dict(key.binary_values),
                integer_values=dict(key.integer_values),
                children=merge_keys(key.children),
                error=key.error,
                enumeration_error=key.enumeration_error,
                last_write_time=key.last_write_time,
            )
            continue
        existing.string_values.update(key.string_values)
        existing.binary_values.update(key.binary_values)
        existing.integer_values.update(key.integer_values)
        existing.children = merge_keys(existing.children + list(key.children))
        existing.error = existing.error or key.error
        existing.enumeration_error = existing.enumeration_error or key.enumeration_error
        existing.last_write_time = existing.last_write_time or key.last_write_time
    return list(merged.values())


class FixtureKeyStore(KeyStore):
    """
    KeyStore поверх дерева FixtureKey.

    Usage:
        store = FixtureKeyStore({
            Hive.LOCAL_MACHINE: [
                FixtureKey.at(r"SYSTEM\\CurrentControlSet\\Control\\Terminal Server",
                              integer_values={"fDenyTSConnections": 0}),
            ],
        })
    """

    def __init__(self, hives: Optional[Mapping[Hive, Union[FixtureKey, Sequence[FixtureKey]]]] = None):
        self._roots: Dict[Hive, FixtureKey] = {}
        for hive, keys in (hives or {}).items():
            if isinstance(keys, FixtureKey):
                keys = [keys]
            self._roots[hive] = FixtureKey(name=hive.value, children=merge_keys(keys))
        self._handles = HandleTable(KeyHandle)

    def open(self, parent: KeyParent, path: str, access: Access = Access.READ) -> KeyHandle:
        if isinstance(parent, Hive):
            node = self._roots.get(parent)
            if node is None:
                raise KeyNotFound(f"Hive not present in fixture: {parent.value}")
            base_path = parent.value
        else:
            node = self._handles.resolve(parent)
            base_path = parent.path

        current_path = base_path
        for segment in _split_key_path(path):
            current_path = f"{current_path}\\{segment}"
            child = node.child(segment)
            if child is None:
                raise KeyNotFound(f"Key not found: {current_path}")
            if child.error is not None:
                raise child.error
            node = child

        return self._handles.register(node, current_path)

    def _node(self, handle: KeyHandle) -> FixtureKey:
        return self._handles.resolve(handle)

    def read_string(self, handle: KeyHandle, name: str) -> Tuple[str, ValueType]:
        node = self._node(handle)
        if name in node.string_values:
            return node.string_values[name], ValueType.STRING
        self._raise_missing(node, handle, name, "string")

    def read_binary(self, handle: KeyHandle, name: str) -> Tuple[bytes, ValueType]:
        node = self._node(handle)
        if name in node.binary_values:
            return bytes(node.binary_values[name]), ValueType.BINARY
        self._raise_missing(node, handle, name, "binary")

    def read_integer(self, handle: KeyHandle, name: str) -> Tuple[int, ValueType]:
        node = self._node(handle)
        if name in node.integer_values:
            value = node.integer_values[name]
            return value, ValueType.DWORD if 0 <= value < 2 ** 32 else ValueType.QWORD
        self._raise_missing(node, handle, name, "integer")

    @staticmethod
    def _raise_missing(node: FixtureKey, handle: KeyHandle, name: str, expected: str):
        if name in node.value_names():
            raise ParseFailure(f"Value {name!r} in {handle.path} is not of type {expected}")
        raise ValueNotFound(f"Value {name!r} not found in {handle.path}")

    def enumerate_value_names(self, handle: KeyHandle, limit: int = 0) -> List[str]:
        node = self._node(handle)
        if node.enumeration_error is not None:
            raise node.enumeration_error
        names = node.value_names()
        return names if limit <= 0 else names[:limit]

    def enumerate_children(self, handle: KeyHandle, limit: int = 0) -> List[str]:
        node = self._node(handle)
        if node.enumeration_error is not None:
            raise node.enumeration_error
        names = [child.name for child in node.children]
        return names if limit <= 0 else names[:limit]

    def stat(self, handle: KeyHandle) -> KeyInfo:
        node = self._node(handle)
        value_names = node.value_names()
        return KeyInfo(
            subkey_count=len(node.children),
            value_count=len(value_names),
            max_subkey_len=max((len(c.name) for c in node.children), default=0),
            max_value_name_len=max((len(n) for n in value_names), default=0),
            last_write_time=node.last_write_time,
        )

    def close(self, handle: KeyHandle) -> bool:
        closed, _ = self._handles.release(handle)
        if not closed:
            logger.debug(f"Close on already closed key handle: {handle!r}")
        return closed

    @property
    def open_handles(self) -> int:
        return self._handles.open_count


# ═══════════════════════════════════════════════════════
# FILE SYSTEM
# ═══════════════════════════════════════════════════════

@dataclass
class FixtureFile:
    """Содержимое файла и внедряемые ошибки."""

    content: Union[bytes, str] = b""
    error: Optional[BaseException] = None        # при open()
    copy_error: Optional[BaseException] = None   # при snapshot()
    modified: Optional[datetime] = None

    @property
    def data(self) -> bytes:
        if isinstance(self.content, str):
            return self.content.encode("utf-8")
        return bytes(self.content)


class _OpenFile:
    __slots__ = ("key", "display", "data", "pos", "writable", "modified")

    def __init__(self, key: str, display: str, data: bytes, writable: bool,
                 modified: Optional[datetime] = None):
        self.key = key
        self.display = display
        self.data = bytearray(data)
        self.pos = 0
        self.writable = writable
        self.modified = modified


def _normalize(path: str) -> str:
    path = path.replace("\\", "/")
    while "//" in path:
        path = path.replace("//", "/")
    return path.rstrip("/").casefold()


class FixtureFileSystem(FileSystem):
    """
    FileSystem поверх словаря путь → FixtureFile.

    Каталоги выводятся из путей файлов (и могут быть заданы явно через dirs).
    Пути сравниваются без учёта регистра и вида разделителя.
    """

    def __init__(
        self,
        files: Optional[Mapping[str, Union[FixtureFile, bytes, str]]] = None,
        dirs: Iterable[str] = (),
        home: str = "C:/Users/user",
    ):
        self._files: Dict[str, Tuple[str, FixtureFile]] = {}
        self._dirs: Dict[str, str] = {}
        self._home = home
        for path, fixture in (files or {}).items():
            if not isinstance(fixture, FixtureFile):
                fixture = FixtureFile(content=fixture)
            display = path.replace("\\", "/").rstrip("/")
            self._files[_normalize(path)] = (display, fixture)
            self._add_parents(display)
        for directory in dirs:
            display = directory.replace("\\", "/").rstrip("/")
            self._dirs[_normalize(display)] = display
            self._add_parents(display)

        self._overlay: Dict[str, Tuple[str, bytes]] = {}
        self._overlay_lock = threading.Lock()
        self._snapshots = 0
        self._snapshot_keys: Set[str] = set()
        self._handles = HandleTable(FileHandle)

    def _add_parents(self, display: str):
        parent = posixpath.dirname(display)
        while parent and parent not in ("/", "."):
            self._dirs.setdefault(_normalize(parent), parent)
            next_parent = posixpath.dirname(parent)
            if next_parent == parent:
                break
            parent = next_parent

    def open(self, path: str, mode: str = "rb") -> FileHandle:
        key = _normalize(path)
        writable = any(flag in mode for flag in ("w", "a", "+"))

        if key in self._dirs and key not in self._files:
            raise ResourceUnavailable(f"Is a directory: {path}")

        with self._overlay_lock:
            overlay = self._overlay.get(key)

        if overlay is not None:
            display, data = overlay
            modified = None
        elif key in self._files:
            display, fixture = self._files[key]
            if fixture.error is not None:
                raise fixture.error
            data, modified = fixture.data, fixture.modified
        elif writable:
            display, data, modified = path.replace("\\", "/"), b"", None
        else:
            raise ResourceUnavailable(f"File not found: {path}")

        if "w" in mode:
            data = b""
        native = _OpenFile(key, display, data, writable, modified)
        if "a" in mode:
            native.pos = len(native.data)
        return self._handles.register(native, display)

    def read(self, handle: FileHandle, size: int = -1) -> bytes:
        native: _OpenFile = self._handles.resolve(handle)
        end = len(native.data) if size is None or size < 0 else min(len(native.data), native.pos + size)
        chunk = bytes(native.data[native.pos:end])
        native.pos = end
        return chunk

    def write(self, handle: FileHandle, data: bytes) -> int:
        native: _OpenFile = self._handles.resolve(handle)
        if not native.writable:
            raise ResourceUnavailable(f"File not opened for writing: {native.display}")
        native.data[native.pos:native.pos + len(data)] = data
        native.pos += len(data)
        return len(data)

    def stat(self, handle: FileHandle) -> FileInfo:
        native: _OpenFile = self._handles.resolve(handle)
        return FileInfo(
            name=posixpath.basename(native.display),
            size=len(native.data),
            modified=native.modified,
        )

    def close(self, handle: FileHandle) -> bool:
        closed, native = self._handles.release(handle)
        if not closed:
            logger.debug(f"Close on already closed file handle: {handle!r}")
            return False
        if native.writable:
            with self._overlay_lock:
                self._overlay[native.key] = (native.display, bytes(native.data))
        return True

    def list_dir(self, path: str) -> List[str]:
        key = _normalize(path)
        if key not in self._dirs:
            raise ResourceUnavailable(f"Directory not found: {path}")
        prefix = key + "/"
        names = {}
        candidates = list(self._dirs.items()) + [(k, d) for k, (d, _) in self._files.items()]
        for child_key, display in candidates:
            if child_key.startswith(prefix) and "/" not in child_key[len(prefix):]:
                name = posixpath.basename(display)
                names[name.casefold()] = name
        return [names[k] for k in sorted(names)]

    def exists(self, path: str) -> bool:
        key = _normalize(path)
        with self._overlay_lock:
            in_overlay = key in self._overlay
        return in_overlay or key in self._files or key in self._dirs

    def is_dir(self, path: str) -> bool:
        return _normalize(path) in self._dirs

    def snapshot(self, path: str) -> str:
        key = _normalize(path)
        if key not in self._files:
            raise ResourceUnavailable(f"File not found: {path}")
        display, fixture = self._files[key]
        if fixture.copy_error is not None:
            raise PartialDataLoss(f"Could not copy {display}", cause=fixture.copy_error)
        with self._overlay_lock:
            self._snapshots += 1
            target = f"{display}.snapshot-{self._snapshots}"
            self._overlay[_normalize(target)] = (target, fixture.data)
            self._snapshot_keys.add(_normalize(target))
        return target

    def cleanup(self):
        """Удалить снимки; записанные файлы остаются в overlay."""
        with self._overlay_lock:
            for key in self._snapshot_keys:
                self._overlay.pop(key, None)
            self._snapshot_keys.clear()

    @property
    def snapshot_count(self) -> int:
        """Количество неудалённых снимков."""
        with self._overlay_lock:
            return len(self._snapshot_keys)

    def home_dir(self) -> str:
        return self._home

    def join(self, *parts: str) -> str:
        cleaned = [p.replace("\\", "/") for p in parts if p]
        if not cleaned:
            return ""
        head, rest = cleaned[0].rstrip("/"), [p.strip("/") for p in cleaned[1:]]
        return "/".join([head] + [p for p in rest if p])

    @property
    def open_handles(self) -> int:
        return self._handles.open_count


# ═══════════════════════════════════════════════════════
# VERSION PROBE
# ═══════════════════════════════════════════════════════

class FixtureVersionProbe(VersionProbe):
    """Фиксированная версия ОС (или внедрённая ошибка)."""

    def __init__(self, major: int = 10, minor: int = 0, build: int = 19045,
                 error: Optional[BaseException] = None):
        self._version = OSVersion(major, minor, build)
        self._error = error

    def get_version(self) -> OSVersion:
        if self._error is not None:
            raise self._error
        return self._version
