"""
Stable result IDs.

The reporting/localization layer keys its messages on these numbers:
never renumber or reuse an ID, only append.
"""

from enum import IntEnum


class CheckID(IntEnum):
    BLUETOOTH = 1
    EXTERNAL_DEVICES = 2
    GUEST_ACCOUNT = 3
    ADVERTISEMENT = 4
    PASSWORD_MANAGER = 5
    LOCATION = 6
    MICROPHONE = 7
    WEBCAM = 8
    APPOINTMENTS = 9
    CONTACTS = 10
    PORTS = 11
    REMOTE_DESKTOP = 12
    SMB = 13
    UAC = 14
    WINDOWS_DEFENDER = 15
    LAST_PASSWORD_CHANGE = 16
    LOGIN_METHOD = 17
    WINDOWS_OUTDATED = 18
    SECURE_BOOT = 19
    STARTUP = 20
    EXTENSION_CHROMIUM = 21
    EXTENSION_EDGE = 22
    HISTORY_CHROMIUM = 23
    HISTORY_EDGE = 24
    SEARCH_CHROMIUM = 25
    SEARCH_EDGE = 26
    COOKIES_FIREFOX = 27
    EXTENSION_FIREFOX = 28
    ADBLOCK_FIREFOX = 29
    SEARCH_FIREFOX = 30
    HISTORY_FIREFOX = 31
    CIS_REGISTRY_SETTINGS = 32
    AUTO_LOGIN = 33
    REMOTE_RPC = 34
    COOKIES_CHROMIUM = 35
    COOKIES_EDGE = 36
    OUTDATED_SOFTWARE = 37
    SCREEN_LOCK = 38
