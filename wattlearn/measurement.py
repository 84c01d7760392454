"""Combining the readings of all power meters."""

from __future__ import annotations

import glob
import time
from pathlib import Path

from .extech import ExtechPowerMeter
from .meters import (
    ACPI_BATTERY_ROOT,
    POWER_SUPPLY_ROOT,
    AcpiPowerMeter,
    OpalSensorsPowerMeter,
    SysfsPowerMeter,
    read_sysfs_string,
)

OPAL_SENSOR_PATTERN = "/sys/devices/platform/opal-sensor/hwmon/hwmon*/power*"


def _directory_entries(root):
    try:
        return sorted(entry.name for entry in Path(root).iterdir()
                      if not entry.name.startswith("."))
    except OSError:
        return []


class PowerMeasurement:
    """The set of power meters and the energy they have seen."""

    def __init__(self, model, meters=None):
        self.model = model
        self.meters = list(meters) if meters is not None else []
        self.clock = time.time
        self._tlast = self.clock()

    def start(self):
        self._tlast = self.clock()
        for meter in self.meters:
            meter.start_measurement()
        self.model.all_results.joules = 0.0

    def end(self):
        for meter in self.meters:
            meter.end_measurement()

    def global_power(self):
        """Total power of all meters, or 0.0 when no battery is discharging."""
        discharging = False
        total = 0.0
        for meter in self.meters:
            discharging |= meter.discharging
            total += meter.power()
        if not discharging:
            return 0.0
        self.model.all_results.power = total
        if 0.01 < total < self.model.min_power:
            self.model.min_power = total
        return total

    def sample(self):
        """Add the energy used since the last sample."""
        now = self.clock()
        self.model.all_results.joules += self.global_power() * (now - self._tlast)
        self._tlast = now

    def joules(self):
        return self.model.all_results.joules

    def time_left(self):
        """Seconds of battery left, or 0.0 when not discharging or no drain."""
        discharging = False
        capacity = 0.0
        rate = 0.0
        for meter in self.meters:
            discharging |= meter.discharging
            capacity += meter.dev_capacity()
            rate += meter.power()
        if not discharging or rate < 0.001:
            return 0.0
        return capacity / rate

    def detect_power_meters(
        self,
        power_supply_root=POWER_SUPPLY_ROOT,
        opal_pattern=OPAL_SENSOR_PATTERN,
        acpi_root=ACPI_BATTERY_ROOT,
    ):
        """Find batteries, UPSes and sensors; ACPI is used only if nothing else is."""
        for name in _directory_entries(power_supply_root):
            kind = read_sysfs_string(Path(power_supply_root) / name / "type")
            if kind in ("Battery", "UPS"):
                self.meters.append(SysfsPowerMeter(name, power_supply_root))

        for path in sorted(glob.glob(opal_pattern)):
            if path.endswith("/"):
                continue
            self.meters.append(OpalSensorsPowerMeter(path))

        if not self.meters:
            for name in _directory_entries(acpi_root):
                self.meters.append(AcpiPowerMeter(name, acpi_root))
        return list(self.meters)

    def add_extech(self, devnode="/dev/ttyUSB0"):
        meter = ExtechPowerMeter(devnode)
        self.meters.append(meter)
        return meter