"""
Resource accessors: key store, file system, OS version.

Live and fixture implementations share the interfaces in ``base``.
"""

from .base import (
    NOT_FOUND,
    Access,
    AccessorBundle,
    Capability,
    FileHandle,
    FileInfo,
    FileSystem,
    Hive,
    KeyHandle,
    KeyInfo,
    KeyStore,
    OSVersion,
    ValueType,
    VersionProbe,
    check_key,
    find_string,
)
from .fixture import (
    FixtureFile,
    FixtureFileSystem,
    FixtureKey,
    FixtureKeyStore,
    FixtureVersionProbe,
)

__all__ = [
    "NOT_FOUND",
    "Access",
    "AccessorBundle",
    "Capability",
    "FileHandle",
    "FileInfo",
    "FileSystem",
    "Hive",
    "KeyHandle",
    "KeyInfo",
    "KeyStore",
    "OSVersion",
    "ValueType",
    "VersionProbe",
    "check_key",
    "find_string",
    "FixtureFile",
    "FixtureFileSystem",
    "FixtureKey",
    "FixtureKeyStore",
    "FixtureVersionProbe",
]
