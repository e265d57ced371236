"""
Browser extension checks (Firefox, Chrome, Edge).

Extension metadata is decoded with typed pydantic models; raw JSON never
leaves this module.
"""

import logging
import re
from abc import abstractmethod
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..core.base_check import CheckContext, CheckResult, FileCheck
from ..core.errors import AccessorError, ParseFailure, ResourceUnavailable
from ..core.models import Category, Severity
from .ids import CheckID

logger = logging.getLogger(__name__)

# Lowercased substrings; an extension whose name contains one is treated as an adblocker
ADBLOCKER_NAMES = [
    "adblock",
    "adblox",
    "advertentieblokker",
    "ad skip",
    "adkrig",
    "adblokker",
    "advertentieblokkering",
    "ad lock",
    "adlock",
    "privacy badger",
    "ublock",
    "adguard",
    "adaware",
    "ghostery",
]

FIREFOX_PROFILES = ("AppData", "Roaming", "Mozilla", "Firefox", "Profiles")

CHROMIUM_BROWSERS = {
    "Chrome": (CheckID.EXTENSION_CHROMIUM, ("Google", "Chrome")),
    "Edge": (CheckID.EXTENSION_EDGE, ("Microsoft", "Edge")),
}

_MESSAGE_REF = re.compile(r"^__MSG_(\w+)__$")


def adblocker_installed(extension_names: List[str]) -> List[str]:
    """
    Найти среди расширений блокировщики рекламы.

    Returns:
        Имена расширений, похожих на adblocker (пустой список — не найдено)
    """
    found = []
    for name in extension_names:
        lowered = name.lower()
        if any(adblocker in lowered for adblocker in ADBLOCKER_NAMES):
            found.append(name)
    return found


# ═══════════════════════════════════════════════════════
# SCHEMAS
# ═══════════════════════════════════════════════════════

class FirefoxLocale(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    creator: Optional[str] = None


class FirefoxAddon(BaseModel):
    """Запись addons[] из extensions.json."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = ""
    type: str = ""
    active: bool = False
    default_locale: FirefoxLocale = Field(default_factory=FirefoxLocale, alias="defaultLocale")


class FirefoxExtensions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    addons: List[FirefoxAddon] = Field(default_factory=list)


class ChromiumManifest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    default_locale: Optional[str] = None


class ChromiumMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: str = ""


_MESSAGES = TypeAdapter(Dict[str, ChromiumMessage])


def _decode(model, raw: bytes, source: str):
    try:
        if isinstance(model, TypeAdapter):
            return model.validate_json(raw)
        return model.model_validate_json(raw)
    except ValidationError as e:
        raise ParseFailure(f"Malformed {source}: {e.error_count()} validation error(s)", cause=e)


# ═══════════════════════════════════════════════════════
# CHECKS
# ═══════════════════════════════════════════════════════

def _version_key(name: str) -> Tuple[int, ...]:
    """Версия как кортеж чисел: "1.58.0_0" -> (1, 58, 0, 0)."""
    return tuple(int(part) for part in re.findall(r"\d+", name))


class AdblockerCheck(FileCheck):
    """
    Установлен ли блокировщик рекламы.

    result_code 0 — найден (имена в findings), 1 — не найден.
    Пустой список расширений — обычный результат "не найден", не ошибка.
    """

    category = Category.BROWSERS
    severities = {0: Severity.INFO, 1: Severity.LOW}

    def inspect(self, ctx: CheckContext) -> CheckResult:
        names = self.extension_names(ctx)
        self.logger.debug(f"{self.name}: {len(names)} extension(s) found")
        adblockers = adblocker_installed(names)
        if adblockers:
            return self.result(0, *adblockers)
        return self.result(1)

    @abstractmethod
    def extension_names(self, ctx: CheckContext) -> List[str]:
        """Имена установленных расширений браузера."""


def firefox_profile(ctx: CheckContext) -> str:
    """
    Каталог первого профиля Firefox, где есть extensions.json.

    Raises:
        ResourceUnavailable: Firefox не установлен или профилей нет
    """
    files = ctx.files
    profiles_dir = files.join(files.home_dir(), *FIREFOX_PROFILES)
    for profile in files.list_dir(profiles_dir):
        candidate = files.join(profiles_dir, profile)
        if files.exists(files.join(candidate, "extensions.json")):
            return candidate
    raise ResourceUnavailable(f"No Firefox profile with extensions.json in {profiles_dir}")


def read_firefox_extensions(ctx: CheckContext) -> FirefoxExtensions:
    files = ctx.files
    source = files.join(firefox_profile(ctx), "extensions.json")
    # Firefox keeps the file open while running
    copy = files.snapshot(source)
    return _decode(FirefoxExtensions, files.read_all(copy), "extensions.json")


class FirefoxExtensionsCheck(FileCheck):
    """Список расширений Firefox: "имя,тип,автор,активно"."""

    result_id = CheckID.EXTENSION_FIREFOX
    category = Category.BROWSERS
    severities = {0: Severity.INFO}

    def inspect(self, ctx: CheckContext) -> CheckResult:
        extensions = read_firefox_extensions(ctx)
        lines = [
            ",".join([
                addon.default_locale.name,
                addon.type,
                addon.default_locale.creator or "",
                str(addon.active).lower(),
            ])
            for addon in extensions.addons
        ]
        return self.result(0, *lines)


class FirefoxAdblockerCheck(AdblockerCheck):
    result_id = CheckID.ADBLOCK_FIREFOX

    def extension_names(self, ctx: CheckContext) -> List[str]:
        return [addon.default_locale.name for addon in read_firefox_extensions(ctx).addons]


class ChromiumAdblockerCheck(AdblockerCheck):
    """
    Блокировщик рекламы в Chrome/Edge.

    Имя расширения берётся из manifest.json установленной версии;
    ссылки вида __MSG_appName__ разрешаются через _locales.
    """

    def __init__(self, browser: str):
        if browser not in CHROMIUM_BROWSERS:
            raise ValueError(f"Unsupported browser: {browser}")
        result_id, self.vendor_path = CHROMIUM_BROWSERS[browser]
        super().__init__(result_id=result_id, name=f"ChromiumAdblockerCheck[{browser}]")
        self.browser = browser

    def extensions_dir(self, ctx: CheckContext) -> str:
        files = ctx.files
        return files.join(
            files.home_dir(), "AppData", "Local", *self.vendor_path, "User Data", "Default", "Extensions"
        )

    def extension_names(self, ctx: CheckContext) -> List[str]:
        files = ctx.files
        root = self.extensions_dir(ctx)
        names = []
        for extension_id in files.list_dir(root):
            ctx.raise_if_cancelled()
            extension_dir = files.join(root, extension_id)
            if not files.is_dir(extension_dir):
                continue
            try:
                name = self._extension_name(ctx, extension_dir)
            except AccessorError as e:
                self.logger.warning(f"Skipping extension {extension_id}: {e}")
                continue
            if name:
                names.append(name)
        return names

    def _extension_name(self, ctx: CheckContext, extension_dir: str) -> Optional[str]:
        files = ctx.files
        versions = [v for v in files.list_dir(extension_dir) if files.is_dir(files.join(extension_dir, v))]
        if not versions:
            return None
        # Latest installed version wins
        version_dir = files.join(extension_dir, max(versions, key=_version_key))
        manifest = _decode(ChromiumManifest, files.read_all(files.join(version_dir, "manifest.json")), "manifest.json")

        match = _MESSAGE_REF.match(manifest.name)
        if not match:
            return manifest.name
        if not manifest.default_locale:
            raise ParseFailure(f"Manifest references {manifest.name} without default_locale")

        messages_path = files.join(version_dir, "_locales", manifest.default_locale, "messages.json")
        messages = _decode(_MESSAGES, files.read_all(messages_path), "messages.json")
        # Message keys are case-insensitive in Chromium
        lookup = {key.lower(): value.message for key, value in messages.items()}
        resolved = lookup.get(match.group(1).lower())
        if resolved is None:
            raise ParseFailure(f"Message {match.group(1)} not found in {messages_path}")
        return resolved
