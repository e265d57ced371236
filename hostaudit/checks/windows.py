"""
Windows settings checks (registry only).
"""

from typing import List

from ..accessors.base import Hive, NOT_FOUND, check_key
from ..core.base_check import CheckContext, CheckResult, RegistryCheck
from ..core.errors import ParseFailure, ValueNotFound
from ..core.models import Severity
from .ids import CheckID


class AdvertisementCheck(RegistryCheck):
    """Передаётся ли рекламный ID приложениям."""

    result_id = CheckID.ADVERTISEMENT
    severities = {0: Severity.INFO, 1: Severity.LOW}

    def inspect(self, ctx: CheckContext) -> CheckResult:
        keys = ctx.keys
        with keys.scoped(Hive.CURRENT_USER, r"SOFTWARE\Microsoft\Windows\CurrentVersion\AdvertisingInfo") as key:
            value, _ = keys.read_integer(key, "Enabled")
        return self.result(1 if value == 1 else 0)


class RemoteDesktopCheck(RegistryCheck):
    """Разрешены ли подключения к удалённому рабочему столу."""

    result_id = CheckID.REMOTE_DESKTOP
    severities = {0: Severity.HIGH, 1: Severity.INFO}

    def inspect(self, ctx: CheckContext) -> CheckResult:
        keys = ctx.keys
        with keys.scoped(Hive.LOCAL_MACHINE, r"System\CurrentControlSet\Control\Terminal Server") as key:
            value, _ = keys.read_integer(key, "fDenyTSConnections")
        if value == 0:
            return self.result(0, "Remote Desktop is enabled")
        return self.result(1, "Remote Desktop is disabled")


class DefenderCheck(RegistryCheck):
    """Включена ли защита в реальном времени Windows Defender."""

    result_id = CheckID.WINDOWS_DEFENDER
    severities = {0: Severity.INFO, 1: Severity.CRITICAL}

    def inspect(self, ctx: CheckContext) -> CheckResult:
        keys = ctx.keys
        with keys.scoped(Hive.LOCAL_MACHINE, r"SOFTWARE\Microsoft\Windows Defender\Real-Time Protection") as key:
            try:
                disabled, _ = keys.read_integer(key, "DisableRealtimeMonitoring")
            except ValueNotFound:
                # Absent value means the default: monitoring on
                disabled = 0
        if disabled == 0:
            return self.result(0)
        if disabled == 1:
            return self.result(1)
        raise ParseFailure(f"Unexpected DisableRealtimeMonitoring value: {disabled}")


class SecureBootCheck(RegistryCheck):
    """Включён ли Secure Boot."""

    result_id = CheckID.SECURE_BOOT
    severities = {0: Severity.HIGH, 1: Severity.INFO, 2: Severity.MEDIUM}

    def inspect(self, ctx: CheckContext) -> CheckResult:
        keys = ctx.keys
        with keys.scoped(Hive.LOCAL_MACHINE, r"SYSTEM\CurrentControlSet\Control\SecureBoot\State") as key:
            status, _ = keys.read_integer(key, "UEFISecureBootEnabled")
        if status in (0, 1):
            return self.result(status)
        return self.result(2)


class AutoLoginCheck(RegistryCheck):
    """Включён ли автоматический вход в систему."""

    result_id = CheckID.AUTO_LOGIN
    severities = {0: Severity.INFO, 1: Severity.HIGH}

    def inspect(self, ctx: CheckContext) -> CheckResult:
        keys = ctx.keys
        with keys.scoped(Hive.LOCAL_MACHINE, r"SOFTWARE\Microsoft\Windows NT\CurrentVersion\Winlogon") as key:
            try:
                value, _ = keys.read_integer(key, "AutoAdminLogon")
            except ValueNotFound:
                self.logger.debug("AutoAdminLogon not set")
                value = 0
        return self.result(1 if value == 1 else 0)


class RemoteRPCCheck(RegistryCheck):
    """Могут ли удалённые машины выполнять RPC на этой."""

    result_id = CheckID.REMOTE_RPC
    severities = {0: Severity.INFO, 1: Severity.MEDIUM}

    def inspect(self, ctx: CheckContext) -> CheckResult:
        keys = ctx.keys
        with keys.scoped(Hive.LOCAL_MACHINE, r"SYSTEM\CurrentControlSet\Control\Terminal Server") as key:
            value, _ = keys.read_integer(key, "AllowRemoteRPC")
        return self.result(int(value))


class ScreenLockCheck(RegistryCheck):
    """Экран блокируется паролем не позже чем через max_timeout секунд."""

    result_id = CheckID.SCREEN_LOCK
    severities = {0: Severity.INFO, 1: Severity.MEDIUM}

    def __init__(self, max_timeout: int = 120):
        super().__init__()
        self.max_timeout = max_timeout

    def inspect(self, ctx: CheckContext) -> CheckResult:
        keys = ctx.keys
        with keys.scoped(Hive.CURRENT_USER, r"Control Panel\Desktop") as key:
            active, _ = keys.read_string(key, "ScreenSaveActive")
            secure, _ = keys.read_string(key, "ScreenSaverIsSecure")
            timeout_raw, _ = keys.read_string(key, "ScreenSaveTimeOut")
        try:
            timeout = int(timeout_raw)
        except ValueError as e:
            raise ParseFailure(f"ScreenSaveTimeOut is not a number: {timeout_raw!r}", cause=e) from e

        if active == "1" and secure == "1" and timeout <= self.max_timeout:
            return self.result(0)
        return self.result(1, f"timeout={timeout}s", f"active={active}", f"secure={secure}")


class LoginMethodCheck(RegistryCheck):
    """
    Какие способы входа настроены.

    result_code — битовая маска способов (PIN = бит 0, ... trust signal = бит 5).
    """

    result_id = CheckID.LOGIN_METHOD

    LOGIN_METHODS = [
        ("{D6886603-9D2F-4EB2-B667-1971041FA96B}", "PIN"),
        ("{2135F72A-90B5-4ED3-A7F1-8BB705AC276A}", "Picture Logon"),
        ("{60B78E88-EAD8-445C-9CFD-0B87F74EA6CD}", "Password"),
        ("{BEC09223-B018-416D-A0AC-523971B639F5}", "Fingerprint"),
        ("{8AF662BF-65A0-4D0A-A540-A338A999D36F}", "Facial recognition"),
        ("{27FBDB57-B613-4AF2-9D7E-4FA7A66C21AD}", "Trust signal"),
    ]

    # Password and/or fingerprint only
    ACCEPTED_MASKS = {4, 8, 12}

    def severity_for(self, result_code: int) -> Severity:
        return Severity.INFO if result_code in self.ACCEPTED_MASKS else Severity.LOW

    def inspect(self, ctx: CheckContext) -> CheckResult:
        keys = ctx.keys
        bits = {guid: (index, label) for index, (guid, label) in enumerate(self.LOGIN_METHODS)}

        mask = 0
        labels: List[str] = []
        with keys.scoped(Hive.LOCAL_MACHINE,
                         r"SOFTWARE\Microsoft\Windows\CurrentVersion\Authentication\LogonUI\UserTile") as key:
            info = keys.stat(key)
            names = keys.enumerate_value_names(key, info.value_count)
            for name in names:
                ctx.raise_if_cancelled()
                value = check_key(keys, key, name)
                if value == NOT_FOUND or value not in bits:
                    raise ParseFailure(f"Unknown login method value {name!r}: {value!r}")
                index, label = bits[value]
                if not mask & (1 << index):
                    labels.append(label)
                mask |= 1 << index

        return self.result(mask, *labels)


class StartupCheck(RegistryCheck):
    """Программы, включённые в автозапуск."""

    result_id = CheckID.STARTUP
    severities = {0: Severity.INFO, 1: Severity.LOW}

    LOCATIONS = [
        (Hive.CURRENT_USER, r"SOFTWARE\Microsoft\Windows\CurrentVersion\Explorer\StartupApproved\Run"),
        (Hive.LOCAL_MACHINE, r"SOFTWARE\Microsoft\Windows\CurrentVersion\Explorer\StartupApproved\Run"),
        (Hive.LOCAL_MACHINE, r"SOFTWARE\Microsoft\Windows\CurrentVersion\Explorer\StartupApproved\Run32"),
    ]

    @staticmethod
    def is_enabled(value: bytes) -> bool:
        """Включённая запись: ненулевой первый байт, остальные нули."""
        if not value or value[0] == 0:
            return False
        return all(b == 0 for b in value[1:])

    def inspect(self, ctx: CheckContext) -> CheckResult:
        keys = ctx.keys
        programs: List[str] = []
        for hive, path in self.LOCATIONS:
            ctx.raise_if_cancelled()
            with keys.scoped(hive, path) as key:
                for name in keys.enumerate_value_names(key):
                    value, _ = keys.read_binary(key, name)
                    if self.is_enabled(value):
                        programs.append(name)

        if not programs:
            return self.result(0)
        return self.result(1, *programs)
