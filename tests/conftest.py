"""
Pytest configuration and fixtures.

Использование:
    pytest tests/ -v
"""

import json

import pytest

from hostaudit.accessors import (
    AccessorBundle,
    FixtureFileSystem,
    FixtureKey,
    FixtureKeyStore,
    FixtureVersionProbe,
    Hive,
)
from hostaudit.checks.permissions import CONSENT_STORE
from hostaudit.config import AuditConfig

HOME = "C:/Users/alice"

FIREFOX_PROFILES = f"{HOME}/AppData/Roaming/Mozilla/Firefox/Profiles"
CHROME_EXTENSIONS = f"{HOME}/AppData/Local/Google/Chrome/User Data/Default/Extensions"
EDGE_EXTENSIONS = f"{HOME}/AppData/Local/Microsoft/Edge/User Data/Default/Extensions"


# ═══════════════════════════════════════════════════════
# BUILDERS
# ═══════════════════════════════════════════════════════

def firefox_extensions_json(*addons) -> str:
    """extensions.json с заданными (name, type, creator, active)."""
    return json.dumps({
        "schemaVersion": 36,
        "addons": [
            {
                "id": f"addon{i}@example.org",
                "type": addon_type,
                "active": active,
                "defaultLocale": {"name": name, "creator": creator},
                "location": "app-profile",
            }
            for i, (name, addon_type, creator, active) in enumerate(addons)
        ],
    })


def chromium_extension(root: str, extension_id: str, name: str, version: str = "1.0.0_0", messages=None):
    """Файлы одного расширения Chromium: manifest.json (+ _locales)."""
    base = f"{root}/{extension_id}/{version}"
    manifest = {"name": name, "manifest_version": 3}
    files = {}
    if messages is not None:
        manifest["default_locale"] = "en"
        files[f"{base}/_locales/en/messages.json"] = json.dumps(
            {key: {"message": value} for key, value in messages.items()}
        )
    files[f"{base}/manifest.json"] = json.dumps(manifest)
    return files


def machine_keys() -> FixtureKeyStore:
    """Реестр "типичной" машины для прогона всего каталога."""
    return FixtureKeyStore({
        Hive.CURRENT_USER: [
            FixtureKey.at(r"SOFTWARE\Microsoft\Windows\CurrentVersion\AdvertisingInfo",
                          integer_values={"Enabled": 1}),
            FixtureKey.at(r"Control Panel\Desktop", string_values={
                "ScreenSaveActive": "1", "ScreenSaverIsSecure": "1", "ScreenSaveTimeOut": "600",
            }),
            FixtureKey.at(r"SOFTWARE\Microsoft\Windows\CurrentVersion\Explorer\StartupApproved\Run",
                          binary_values={"Spotify": b"\x02\x00\x00\x00", "Teams": b"\x03\x00\x00\x01"}),
            FixtureKey.at(f"{CONSENT_STORE}\\webcam", string_values={"Value": "Allow"}, children=[
                FixtureKey(name="Microsoft.WindowsCamera_8wekyb3d8bbwe", string_values={"Value": "Allow"}),
            ]),
            FixtureKey.at(f"{CONSENT_STORE}\\microphone", string_values={"Value": "Deny"}),
            FixtureKey.at(f"{CONSENT_STORE}\\location", string_values={"Value": "Deny"}),
            FixtureKey.at(f"{CONSENT_STORE}\\contacts", string_values={"Value": "Deny"}),
            FixtureKey.at(f"{CONSENT_STORE}\\appointments", string_values={"Value": "Deny"}),
        ],
        Hive.LOCAL_MACHINE: [
            FixtureKey.at(r"SYSTEM\CurrentControlSet\Services\BTHPORT\Parameters\Devices", children=[
                FixtureKey(name="a1b2c3d4e5f6", binary_values={"Name": b"Headphones\x00"}),
            ]),
            FixtureKey.at(r"System\CurrentControlSet\Control\Terminal Server",
                          integer_values={"fDenyTSConnections": 1, "AllowRemoteRPC": 0}),
            FixtureKey.at(r"SOFTWARE\Microsoft\Windows Defender\Real-Time Protection",
                          integer_values={"DisableRealtimeMonitoring": 0}),
            FixtureKey.at(r"SOFTWARE\Microsoft\Windows\CurrentVersion\Authentication\LogonUI\UserTile",
                          string_values={"S-1-5-21-1": "{60B78E88-EAD8-445C-9CFD-0B87F74EA6CD}"}),
            FixtureKey.at(r"SYSTEM\CurrentControlSet\Control\SecureBoot\State",
                          integer_values={"UEFISecureBootEnabled": 1}),
            FixtureKey.at(r"SOFTWARE\Microsoft\Windows\CurrentVersion\Explorer\StartupApproved\Run"),
            FixtureKey.at(r"SOFTWARE\Microsoft\Windows\CurrentVersion\Explorer\StartupApproved\Run32"),
            FixtureKey.at(r"SOFTWARE\Microsoft\Windows NT\CurrentVersion\Winlogon",
                          integer_values={"AutoAdminLogon": 0}),
        ],
    })


def machine_files() -> FixtureFileSystem:
    files = {
        f"{FIREFOX_PROFILES}/abcd.default-release/extensions.json": firefox_extensions_json(
            ("uBlock Origin", "extension", "Raymond Hill", True),
        ),
        "C:/Program Files/Bitwarden/Bitwarden.exe": b"MZ",
    }
    files.update(chromium_extension(CHROME_EXTENSIONS, "cjpalhdlnbpafiamejdnhcphjbkeiagm", "uBlock Origin"))
    files.update(chromium_extension(EDGE_EXTENSIONS, "aapbdbdomjkkjkaonfhkkikfgjllcleb", "Google Translate"))
    return FixtureFileSystem(files, home=HOME)


def machine_bundle() -> AccessorBundle:
    return AccessorBundle(keys=machine_keys(), files=machine_files(), version=FixtureVersionProbe(10, 0, 22631))


# ═══════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════

@pytest.fixture
def bundle():
    """Accessor'ы типичной машины (fixture-реализация)."""
    return machine_bundle()


@pytest.fixture
def config(tmp_path, monkeypatch):
    """Test configuration, isolated from the developer's environment."""
    for name in ("HOSTAUDIT_CONCURRENCY_LIMIT", "HOSTAUDIT_PER_CHECK_TIMEOUT_SECONDS",
                 "HOSTAUDIT_UNEVALUATED_SEVERITY", "HOSTAUDIT_REPORT_OUTPUT_DIR"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return AuditConfig(
        concurrency_limit=8,
        per_check_timeout_seconds=5.0,
        report_output_dir=tmp_path / "reports",
    )


def make_bundle(keys=None, files=None, version=None) -> AccessorBundle:
    return AccessorBundle(keys=keys, files=files, version=version)


def single_key_store(hive: Hive, path: str, **values) -> FixtureKeyStore:
    return FixtureKeyStore({hive: [FixtureKey.at(path, **values)]})


