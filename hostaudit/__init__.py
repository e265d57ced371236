"""
HostAudit: privacy and security audit of a running machine.

Проверяет:
- Реестр Windows (реклама, удалённый доступ, Defender, автозапуск...)
- Разрешения приложений (камера, микрофон, геолокация...)
- Профили браузеров (расширения, блокировщики рекламы)
- Версию ОС

Usage:
    python -m hostaudit.main
"""

__version__ = "1.0.0"
