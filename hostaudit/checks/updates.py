"""
OS update checks.
"""

from typing import Dict, Optional

from ..core.base_check import CheckContext, CheckResult, VersionCheck
from ..core.models import Severity
from .ids import CheckID

# Oldest build still considered current, per Windows release
DEFAULT_MIN_BUILDS = {"10": 19045, "11": 22631}


class WindowsOutdatedCheck(VersionCheck):
    """
    Актуальна ли версия Windows.

    result_code: 0 — актуальна, 1 — устарела, 2 — не поддерживается.
    """

    result_id = CheckID.WINDOWS_OUTDATED
    severities = {0: Severity.INFO, 1: Severity.HIGH, 2: Severity.CRITICAL}

    def __init__(self, min_builds: Optional[Dict[str, int]] = None):
        super().__init__()
        self.min_builds = dict(min_builds or DEFAULT_MIN_BUILDS)

    def inspect(self, ctx: CheckContext) -> CheckResult:
        version = ctx.version.get_version()
        if version.major < 10:
            return self.result(2, f"Windows {version.major}.{version.minor}", f"build {version.build}")

        release = "11" if version.is_windows_11 else "10"
        minimum = self.min_builds.get(release)
        findings = (f"Windows {release}", f"build {version.build}")
        if minimum is not None and version.build < minimum:
            return self.result(1, *findings, f"minimum build {minimum}")
        return self.result(0, *findings)
