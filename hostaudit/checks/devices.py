"""
External device checks.
"""

from ..accessors.base import Hive
from ..core.base_check import CheckContext, CheckResult, RegistryCheck
from ..core.errors import AccessorError
from ..core.models import Category, Severity
from .ids import CheckID


class BluetoothCheck(RegistryCheck):
    """Сопряжённые Bluetooth-устройства."""

    result_id = CheckID.BLUETOOTH
    category = Category.DEVICES
    severities = {0: Severity.INFO, 1: Severity.LOW}

    def inspect(self, ctx: CheckContext) -> CheckResult:
        keys = ctx.keys
        device_names = []
        with keys.scoped(Hive.LOCAL_MACHINE, r"SYSTEM\CurrentControlSet\Services\BTHPORT\Parameters\Devices") as key:
            devices = keys.enumerate_children(key)
            if not devices:
                return self.result(0)

            for device in devices:
                ctx.raise_if_cancelled()
                # One unreadable device does not hide the others
                try:
                    with keys.scoped(key, device) as device_key:
                        raw, _ = keys.read_binary(device_key, "Name")
                except AccessorError as e:
                    self.logger.warning(f"Error reading device {device}: {e}")
                    continue
                device_names.append(raw.rstrip(b"\x00").decode("utf-8", errors="replace"))

        return self.result(1, *device_names)
