"""Battery and platform power meters read from procfs and sysfs."""

from __future__ import annotations

import re
from pathlib import Path

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")
_LEADING_UNSIGNED = re.compile(r"\s*\+?(\d+)")

ACPI_BATTERY_ROOT = "/proc/acpi/battery"
POWER_SUPPLY_ROOT = "/sys/class/power_supply"


def read_sysfs_int(path):
    """Return the integer at the start of a sysfs file, or None if unreadable."""
    try:
        text = Path(path).read_text()
    except (OSError, UnicodeDecodeError):
        return None
    match = _LEADING_INT.match(text)
    if match is None:
        return None
    return int(match.group(1))


def read_sysfs_string(path):
    """Return the first line of a sysfs file without surrounding whitespace, or ''."""
    try:
        with open(path, encoding="utf-8", errors="replace") as handle:
            line = handle.readline()
    except OSError:
        return ""
    return line.strip()


def _value_and_units(line):
    rest = line.split(":", 1)[1].lstrip(" ")
    match = _LEADING_UNSIGNED.match(rest)
    value = float(match.group(1)) if match else 0.0
    space = rest.find(" ")
    if space < 0:
        return 0.0, "Unknown"
    return value, rest[space + 1:]


def parse_acpi_battery_state(text):
    """Parse an ACPI battery state file.

    Returns ``(rate, capacity, voltage)`` in watts, joules and volts. Values
    that cannot be expressed in those units are reported as 0.0, and a battery
    that is absent or not discharging reports all zeros.
    """
    zeros = (0.0, 0.0, 0.0)
    rate = capacity = voltage = 0.0
    rate_units = capacity_units = voltage_units = ""

    for line in text.splitlines():
        if "present:" in line and "yes" not in line:
            return zeros
        if "charging state:" in line and "discharging" not in line:
            return zeros
        if "present rate:" in line:
            rate, rate_units = _value_and_units(line)
        if "remaining capacity:" in line:
            capacity, capacity_units = _value_and_units(line)
        if "present voltage:" in line:
            voltage, voltage_units = _value_and_units(line)

    if voltage_units == "mV":
        voltage, voltage_units = voltage / 1000.0, "V"
    if rate_units == "mW":
        rate, rate_units = rate / 1000.0, "W"
    if rate_units == "mA":
        rate, rate_units = rate / 1000.0, "A"
    if capacity_units == "mAh":
        capacity, capacity_units = capacity / 1000.0, "Ah"
    if capacity_units == "mWh":
        capacity, capacity_units = capacity / 1000.0, "Wh"
    if capacity_units == "Wh":
        capacity, capacity_units = capacity * 3600.0, "J"
    if capacity_units == "Ah" and voltage_units == "V":
        capacity, capacity_units = capacity * 3600.0 * voltage, "J"
    if rate_units == "A" and voltage_units == "V":
        rate, rate_units = rate * voltage, "W"

    return (
        rate if rate_units == "W" else 0.0,
        capacity if capacity_units == "J" else 0.0,
        voltage if voltage_units == "V" else 0.0,
    )


class PowerMeter:
    """A source of power readings; the base reports nothing."""

    def __init__(self):
        self.discharging = False

    def start_measurement(self):
        """Begin a measurement interval."""

    def end_measurement(self):
        """Finish a measurement interval."""

    def power(self):
        """Current power draw in watts."""
        return 0.0

    def dev_capacity(self):
        """Remaining energy in joules."""
        return 0.0


class AcpiPowerMeter(PowerMeter):
    """Battery read from the legacy ACPI procfs interface."""

    def __init__(self, battery_name, root=ACPI_BATTERY_ROOT):
        super().__init__()
        self.battery_name = battery_name
        self.root = Path(root)
        self._rate = 0.0
        self._capacity = 0.0
        self._voltage = 0.0

    def measure(self):
        """Read the battery state file and update the readings."""
        self._rate = self._capacity = self._voltage = 0.0
        try:
            text = (self.root / self.battery_name / "state").read_text(errors="replace")
        except OSError:
            return
        self._rate, self._capacity, self._voltage = parse_acpi_battery_state(text)

    def start_measurement(self):
        # Battery state lags behind; only the end of an interval is measured.
        pass

    def end_measurement(self):
        self.measure()

    def power(self):
        return self._rate

    def dev_capacity(self):
        return self._capacity


class SysfsPowerMeter(PowerMeter):
    """Battery or UPS read from the power_supply sysfs class."""

    def __init__(self, name, root=POWER_SUPPLY_ROOT):
        super().__init__()
        self.name = name
        self.root = Path(root)
        self._rate = 0.0
        self._capacity = 0.0

    def _attr(self, attribute):
        return read_sysfs_int(self.root / self.name / attribute)

    def _is_present(self):
        present = self._attr("present")
        if present is None:
            return True
        return bool(present)

    def _voltage(self):
        voltage = self._attr("voltage_now")
        if voltage is None:
            return -1.0
        return voltage / 1000000.0

    def _rate_from_power(self):
        power = self._attr("power_now")
        if power is None:
            return False
        # Some drivers report a negative value while discharging.
        self._rate = abs(power) / 1000000.0
        return True

    def _rate_from_current(self, voltage):
        current = self._attr("current_now")
        if current is None:
            return False
        self._rate = (abs(current) / 1000000.0) * voltage
        return True

    def _capacity_from_energy(self):
        energy = self._attr("energy_now")
        if energy is None:
            return False
        self._capacity = energy / 1000000.0 * 3600.0
        return True

    def _capacity_from_charge(self, voltage):
        charge = self._attr("charge_now")
        if charge is None:
            return False
        self._capacity = (charge / 1000000.0) * voltage * 3600.0
        return True

    def measure(self):
        """Read the supply's sysfs attributes and update the readings."""
        self._rate = 0.0
        self._capacity = 0.0
        self.discharging = False

        if not self._is_present():
            return
        if read_sysfs_string(self.root / self.name / "status") == "Discharging":
            self.discharging = True

        got_rate = self._rate_from_power()
        got_capacity = self._capacity_from_energy()

        if not got_rate or not got_capacity:
            voltage = self._voltage()
            if voltage < 0.0:
                return
            if not got_rate:
                self._rate_from_current(voltage)
            if not got_capacity:
                self._capacity_from_charge(voltage)

    def start_measurement(self):
        # Battery state lags behind; only the end of an interval is measured.
        pass

    def end_measurement(self):
        self.measure()

    def power(self):
        return self._rate

    def dev_capacity(self):
        return self._capacity


class OpalSensorsPowerMeter(PowerMeter):
    """Power sensor exposed by the OPAL firmware through hwmon."""

    def __init__(self, path):
        super().__init__()
        self.path = Path(path)

    def power(self):
        value = read_sysfs_int(self.path)
        if value is None:
            return 0.0
        return value / 1000000.0

    def dev_capacity(self):
        return 0.0