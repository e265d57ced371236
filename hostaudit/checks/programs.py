"""
Installed programs checks.
"""

from typing import Sequence

from ..core.base_check import CheckContext, CheckResult, FileCheck
from ..core.errors import ResourceUnavailable
from ..core.models import Category, Severity
from .ids import CheckID

PASSWORD_MANAGERS = [
    "LastPass",
    "1Password",
    "Dashlane",
    "enpass",
    "Bitwarden",
    "Keeper",
    "RoboForm",
    "NordPass",
    "Sticky Password",
    "KeePass",
]


class PasswordManagerCheck(FileCheck):
    """Установлен ли менеджер паролей (по каталогам Program Files)."""

    result_id = CheckID.PASSWORD_MANAGER
    category = Category.PROGRAMS
    severities = {0: Severity.INFO, 1: Severity.MEDIUM}

    def __init__(self, program_dirs: Sequence[str] = (r"C:\Program Files", r"C:\Program Files (x86)")):
        super().__init__()
        self.program_dirs = list(program_dirs)

    def inspect(self, ctx: CheckContext) -> CheckResult:
        files = ctx.files
        listed_any = False
        for directory in self.program_dirs:
            ctx.raise_if_cancelled()
            try:
                programs = files.list_dir(directory)
            except ResourceUnavailable as e:
                self.logger.info(f"Skipping {directory}: {e}")
                continue
            listed_any = True
            for program in programs:
                for manager in PASSWORD_MANAGERS:
                    if manager.lower() in program.lower():
                        return self.result(0, manager)

        if not listed_any:
            raise ResourceUnavailable(
                f"None of the program directories could be listed: {', '.join(self.program_dirs)}"
            )
        return self.result(1)
