"""
Check units.

Каждая проверка — подкласс BaseCheck с постоянным result_id (см. ids.py).
"""

from .browsers import ChromiumAdblockerCheck, FirefoxAdblockerCheck, FirefoxExtensionsCheck, adblocker_installed
from .devices import BluetoothCheck
from .ids import CheckID
from .permissions import PermissionCheck
from .programs import PasswordManagerCheck
from .updates import WindowsOutdatedCheck
from .windows import (
    AdvertisementCheck,
    AutoLoginCheck,
    DefenderCheck,
    LoginMethodCheck,
    RemoteDesktopCheck,
    RemoteRPCCheck,
    ScreenLockCheck,
    SecureBootCheck,
    StartupCheck,
)

__all__ = [
    "AdvertisementCheck",
    "AutoLoginCheck",
    "BluetoothCheck",
    "CheckID",
    "ChromiumAdblockerCheck",
    "DefenderCheck",
    "FirefoxAdblockerCheck",
    "FirefoxExtensionsCheck",
    "LoginMethodCheck",
    "PasswordManagerCheck",
    "PermissionCheck",
    "RemoteDesktopCheck",
    "RemoteRPCCheck",
    "ScreenLockCheck",
    "SecureBootCheck",
    "StartupCheck",
    "WindowsOutdatedCheck",
    "adblocker_installed",
]
