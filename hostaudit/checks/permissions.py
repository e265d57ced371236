"""
App permission checks (camera, microphone, location, ...).
"""

from typing import List

from ..accessors.base import Hive, KeyHandle, KeyStore
from ..core.base_check import CheckContext, CheckResult, RegistryCheck
from ..core.errors import ValueNotFound
from ..core.models import Category, Severity

NON_PACKAGED = "NonPackaged"

CONSENT_STORE = r"Software\Microsoft\Windows\CurrentVersion\CapabilityAccessManager\ConsentStore"


def remove_duplicates(items: List[str]) -> List[str]:
    """Убрать повторы, сохранив порядок."""
    seen = set()
    unique = []
    for item in items:
        if item not in seen:
            seen.add(item)
            unique.append(item)
    return unique


def pretty_app_name(name: str) -> str:
    if name.lower().endswith(".exe"):
        name = name[:-4]
    return name.replace(".", " ")


class PermissionCheck(RegistryCheck):
    """
    Какие приложения имеют доступ к заданному разрешению.

    result_code 0 — приложения с доступом есть (перечислены),
    1 — доступ запрещён глобально или ни у кого его нет.
    """

    category = Category.PERMISSIONS
    severities = {0: Severity.LOW, 1: Severity.INFO}

    def __init__(self, result_id: int, permission: str):
        super().__init__(result_id=result_id, name=f"PermissionCheck[{permission}]")
        self.permission = permission

    def inspect(self, ctx: CheckContext) -> CheckResult:
        keys = ctx.keys
        with keys.scoped(Hive.CURRENT_USER, f"{CONSENT_STORE}\\{self.permission}") as key:
            general, _ = keys.read_string(key, "Value")
            if general != "Allow":
                return self.result(1)

            apps = self._allowed_apps(ctx, keys, key, general)

        names = remove_duplicates(pretty_app_name(app) for app in apps)
        if not names:
            return self.result(1)
        return self.result(0, *names)

    def _allowed_apps(self, ctx: CheckContext, keys: KeyStore, key: KeyHandle, general: str) -> List[str]:
        apps: List[str] = []
        for app_name in keys.enumerate_children(key):
            ctx.raise_if_cancelled()
            with keys.scoped(key, app_name) as app_key:
                if app_name == NON_PACKAGED:
                    # NonPackaged carries no Value of its own and follows the general setting
                    value = general
                else:
                    try:
                        value, _ = keys.read_string(app_key, "Value")
                    except ValueNotFound:
                        continue
                if value != "Allow":
                    continue

                if app_name == NON_PACKAGED:
                    # Sub keys look like C:#Program Files#App#app.exe
                    for exe in keys.enumerate_children(app_key):
                        apps.append(exe.split("#")[-1])
                else:
                    apps.append(app_name.split("_")[0])
        return apps
