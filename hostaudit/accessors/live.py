"""
Live accessors backed by the running machine.

- LiveKeyStore: Windows registry via winreg
- LiveFileSystem: local files, snapshots copied to a private temp dir
- LiveVersionProbe: sys.getwindowsversion() / platform.version()
"""

import logging
import os
import platform
import re
import shutil
import sys
import tempfile
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Tuple

try:
    import winreg
except ImportError:  # not Windows
    winreg = None

from ..core.errors import (
    AccessDenied,
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

_FILETIME_EPOCH = datetime(1601, 1, 1)


def _filetime_to_datetime(filetime: int) -> Optional[datetime]:
    if not filetime:
        return None
    return _FILETIME_EPOCH + timedelta(microseconds=filetime // 10)


def _classify_os_error(error: OSError, message: str, not_found=ResourceUnavailable):
    """OSError → исключение из нашей таксономии."""
    if isinstance(error, FileNotFoundError):
        return not_found(message, cause=error)
    if isinstance(error, PermissionError):
        return AccessDenied(f"Access denied: {message}", cause=error)
    return ResourceUnavailable(message, cause=error)


class LiveKeyStore(KeyStore):
    """Реестр Windows."""

    def __init__(self):
        self._handles = HandleTable(KeyHandle)

    @staticmethod
    def _require_registry():
        if winreg is None:
            raise ResourceUnavailable("Registry is not available on this platform")

    @staticmethod
    def _root(hive: Hive):
        return {
            Hive.CURRENT_USER: winreg.HKEY_CURRENT_USER,
            Hive.LOCAL_MACHINE: winreg.HKEY_LOCAL_MACHINE,
            Hive.USERS: winreg.HKEY_USERS,
        }[hive]

    @staticmethod
    def _value_type(reg_type: int) -> ValueType:
        return {
            winreg.REG_SZ: ValueType.STRING,
            winreg.REG_EXPAND_SZ: ValueType.EXPAND_STRING,
            winreg.REG_BINARY: ValueType.BINARY,
            winreg.REG_DWORD: ValueType.DWORD,
            winreg.REG_QWORD: ValueType.QWORD,
            winreg.REG_MULTI_SZ: ValueType.MULTI_STRING,
        }.get(reg_type, ValueType.OTHER)

    def open(self, parent: KeyParent, path: str, access: Access = Access.READ) -> KeyHandle:
        self._require_registry()
        if isinstance(parent, Hive):
            native_parent = self._root(parent)
            full_path = f"{parent.value}\\{path}" if path else parent.value
        else:
            native_parent = self._handles.resolve(parent)
            full_path = f"{parent.path}\\{path}" if path else parent.path

        sam = winreg.KEY_READ
        if access == Access.WRITE:
            sam |= winreg.KEY_WRITE
        try:
            native = winreg.OpenKey(native_parent, path, 0, sam)
        except OSError as e:
            raise _classify_os_error(e, f"Cannot open key {full_path}", KeyNotFound) from e
        return self._handles.register(native, full_path)

    def _query(self, handle: KeyHandle, name: str) -> Tuple[object, ValueType]:
        native = self._handles.resolve(handle)
        try:
            value, reg_type = winreg.QueryValueEx(native, name)
        except OSError as e:
            raise _classify_os_error(e, f"Value {name!r} not readable in {handle.path}", ValueNotFound) from e
        return value, self._value_type(reg_type)

    def read_string(self, handle: KeyHandle, name: str) -> Tuple[str, ValueType]:
        value, value_type = self._query(handle, name)
        if value_type not in (ValueType.STRING, ValueType.EXPAND_STRING):
            raise ParseFailure(f"Value {name!r} in {handle.path} is {value_type.value}, not a string")
        return value, value_type

    def read_binary(self, handle: KeyHandle, name: str) -> Tuple[bytes, ValueType]:
        value, value_type = self._query(handle, name)
        if value_type != ValueType.BINARY:
            raise ParseFailure(f"Value {name!r} in {handle.path} is {value_type.value}, not binary")
        return bytes(value), value_type

    def read_integer(self, handle: KeyHandle, name: str) -> Tuple[int, ValueType]:
        value, value_type = self._query(handle, name)
        if value_type not in (ValueType.DWORD, ValueType.QWORD):
            raise ParseFailure(f"Value {name!r} in {handle.path} is {value_type.value}, not an integer")
        return int(value), value_type

    def _enumerate(self, handle: KeyHandle, limit: int, values: bool) -> List[str]:
        native = self._handles.resolve(handle)
        try:
            subkeys, value_count, _ = winreg.QueryInfoKey(native)
            count = value_count if values else subkeys
            if limit > 0:
                count = min(count, limit)
            if values:
                return [winreg.EnumValue(native, i)[0] for i in range(count)]
            return [winreg.EnumKey(native, i) for i in range(count)]
        except OSError as e:
            raise _classify_os_error(e, f"Cannot enumerate {handle.path}") from e

    def enumerate_value_names(self, handle: KeyHandle, limit: int = 0) -> List[str]:
        return self._enumerate(handle, limit, values=True)

    def enumerate_children(self, handle: KeyHandle, limit: int = 0) -> List[str]:
        return self._enumerate(handle, limit, values=False)

    def stat(self, handle: KeyHandle) -> KeyInfo:
        native = self._handles.resolve(handle)
        try:
            subkeys, values, last_write = winreg.QueryInfoKey(native)
        except OSError as e:
            raise _classify_os_error(e, f"Cannot stat {handle.path}") from e
        subkey_names = self.enumerate_children(handle)
        value_names = self.enumerate_value_names(handle)
        return KeyInfo(
            subkey_count=subkeys,
            value_count=values,
            max_subkey_len=max((len(n) for n in subkey_names), default=0),
            max_value_name_len=max((len(n) for n in value_names), default=0),
            last_write_time=_filetime_to_datetime(last_write),
        )

    def close(self, handle: KeyHandle) -> bool:
        closed, native = self._handles.release(handle)
        if not closed:
            logger.debug(f"Close on already closed key handle: {handle!r}")
            return False
        try:
            native.Close()
        except OSError as e:
            logger.warning(f"Error closing registry key {handle.path}: {e}")
        return True

    @property
    def open_handles(self) -> int:
        return self._handles.open_count


class LiveFileSystem(FileSystem):
    """Локальная файловая система."""

    def __init__(self):
        self._handles = HandleTable(FileHandle)
        self._snapshot_dir: Optional[str] = None
        self._snapshot_count = 0
        self._lock = threading.Lock()
        self._path_locks: Dict[str, threading.Lock] = {}

    def open(self, path: str, mode: str = "rb") -> FileHandle:
        if "b" not in mode:
            mode += "b"
        try:
            native = open(path, mode)
        except OSError as e:
            raise _classify_os_error(e, f"Cannot open file {path}") from e
        return self._handles.register(native, path)

    def read(self, handle: FileHandle, size: int = -1) -> bytes:
        native = self._handles.resolve(handle)
        try:
            return native.read(size)
        except OSError as e:
            raise _classify_os_error(e, f"Cannot read {handle.path}") from e

    def write(self, handle: FileHandle, data: bytes) -> int:
        native = self._handles.resolve(handle)
        try:
            return native.write(data)
        except OSError as e:
            raise _classify_os_error(e, f"Cannot write {handle.path}") from e

    def stat(self, handle: FileHandle) -> FileInfo:
        native = self._handles.resolve(handle)
        st = os.fstat(native.fileno())
        return FileInfo(
            name=os.path.basename(handle.path),
            size=st.st_size,
            modified=datetime.fromtimestamp(st.st_mtime),
        )

    def close(self, handle: FileHandle) -> bool:
        closed, native = self._handles.release(handle)
        if not closed:
            logger.debug(f"Close on already closed file handle: {handle!r}")
            return False
        try:
            native.close()
        except OSError as e:
            logger.warning(f"Error closing file {handle.path}: {e}")
        return True

    def list_dir(self, path: str) -> List[str]:
        try:
            return sorted(os.listdir(path), key=str.casefold)
        except OSError as e:
            raise _classify_os_error(e, f"Cannot list directory {path}") from e

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    def is_dir(self, path: str) -> bool:
        return os.path.isdir(path)

    def _path_lock(self, path: str) -> threading.Lock:
        key = os.path.normcase(os.path.abspath(path))
        with self._lock:
            return self._path_locks.setdefault(key, threading.Lock())

    def snapshot(self, path: str) -> str:
        if not os.path.isfile(path):
            raise ResourceUnavailable(f"File not found: {path}")

        # Copies of the same source are serialized
        with self._path_lock(path):
            with self._lock:
                if self._snapshot_dir is None:
                    self._snapshot_dir = tempfile.mkdtemp(prefix="hostaudit-")
                self._snapshot_count += 1
                target = os.path.join(
                    self._snapshot_dir,
                    f"{self._snapshot_count}-{os.path.basename(path)}",
                )
            try:
                shutil.copy2(path, target)
            except OSError as e:
                raise PartialDataLoss(f"Could not copy {path}", cause=e) from e
        return target

    def home_dir(self) -> str:
        return str(Path.home())

    def join(self, *parts: str) -> str:
        return os.path.join(*parts)

    @property
    def open_handles(self) -> int:
        return self._handles.open_count

    def cleanup(self):
        """Удалить снимки файлов этого запуска."""
        with self._lock:
            snapshot_dir, self._snapshot_dir = self._snapshot_dir, None
        if snapshot_dir:
            shutil.rmtree(snapshot_dir, ignore_errors=True)
            logger.debug(f"Removed snapshot directory {snapshot_dir}")


class LiveVersionProbe(VersionProbe):
    """Версия ОС текущей машины."""

    _VERSION_RE = re.compile(r"(\d+)\.(\d+)(?:\.(\d+))?")

    def get_version(self) -> OSVersion:
        if sys.platform == "win32":
            info = sys.getwindowsversion()
            return OSVersion(info.major, info.minor, info.build)

        raw = platform.version() or platform.release()
        match = self._VERSION_RE.search(raw or "")
        if not match:
            raise ParseFailure(f"Cannot parse OS version string: {raw!r}")
        major, minor, build = match.groups()
        return OSVersion(int(major), int(minor), int(build or 0))
