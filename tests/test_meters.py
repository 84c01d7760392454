import pytest

from wattlearn.meters import (
    AcpiPowerMeter,
    OpalSensorsPowerMeter,
    PowerMeter,
    SysfsPowerMeter,
    parse_acpi_battery_state,
    read_sysfs_int,
    read_sysfs_string,
)

SAMPLE_STATE = """present:                 yes
capacity state:          ok
charging state:          discharging
present rate:            8580 mW
remaining capacity:      34110 mWh
present voltage:         12001 mV
"""


def _state(rate, capacity, voltage, charging="discharging", present="yes"):
    return (
        f"present:                 {present}\n"
        "capacity state:          ok\n"
        f"charging state:          {charging}\n"
        f"present rate:            {rate}\n"
        f"remaining capacity:      {capacity}\n"
        f"present voltage:         {voltage}\n"
    )


def _supply(root, name, **attrs):
    directory = root / name
    directory.mkdir(parents=True, exist_ok=True)
    for key, value in attrs.items():
        (directory / key).write_text(f"{value}\n")
    return directory


def test_read_sysfs_int(tmp_path):
    path = tmp_path / "value"
    path.write_text("42\n")
    assert read_sysfs_int(path) == 42
    path.write_text("-17\n")
    assert read_sysfs_int(path) == -17


def test_read_sysfs_int_failures(tmp_path):
    assert read_sysfs_int(tmp_path / "missing") is None
    path = tmp_path / "garbage"
    path.write_text("abc\n")
    assert read_sysfs_int(path) is None


def test_read_sysfs_string(tmp_path):
    path = tmp_path / "status"
    path.write_text("Discharging\n")
    assert read_sysfs_string(path) == "Discharging"
    assert read_sysfs_string(tmp_path / "missing") == ""


def test_parse_documented_sample():
    rate, capacity, voltage = parse_acpi_battery_state(SAMPLE_STATE)
    assert rate == pytest.approx(8.58)
    assert capacity == pytest.approx(122796.0)
    assert voltage == pytest.approx(12.001)


def test_parse_not_discharging_reports_zero():
    text = _state("8580 mW", "34110 mWh", "12001 mV", charging="charging")
    assert parse_acpi_battery_state(text) == (0.0, 0.0, 0.0)


def test_parse_absent_battery_reports_zero():
    text = _state("8580 mW", "34110 mWh", "12001 mV", present="no")
    assert parse_acpi_battery_state(text) == (0.0, 0.0, 0.0)


def test_parse_amp_units_match_watt_units():
    amps = parse_acpi_battery_state(_state("1000 mA", "2000 mAh", "12000 mV"))
    watts = parse_acpi_battery_state(_state("12000 mW", "24000 mWh", "12000 mV"))
    assert amps[0] == pytest.approx(watts[0])
    assert amps[1] == pytest.approx(watts[1])
    assert amps[2] == pytest.approx(watts[2])


def test_parse_unknown_units_give_zero():
    rate, capacity, _ = parse_acpi_battery_state(_state("5 furlongs", "7 bushels", "12000 mV"))
    assert rate == 0.0
    assert capacity == 0.0


def test_parse_missing_units_give_zero():
    rate, _, _ = parse_acpi_battery_state(_state("8580", "34110 mWh", "12001 mV"))
    assert rate == 0.0


def test_base_meter_reports_nothing():
    meter = PowerMeter()
    meter.start_measurement()
    meter.end_measurement()
    assert meter.power() == 0.0
    assert meter.dev_capacity() == 0.0
    assert meter.discharging is False


def test_acpi_meter_matches_parser(tmp_path):
    (tmp_path / "BAT0").mkdir()
    (tmp_path / "BAT0" / "state").write_text(SAMPLE_STATE)
    meter = AcpiPowerMeter("BAT0", root=tmp_path)
    meter.start_measurement()
    assert meter.power() == 0.0
    meter.end_measurement()
    rate, capacity, _ = parse_acpi_battery_state(SAMPLE_STATE)
    assert meter.power() == rate
    assert meter.dev_capacity() == capacity


def test_acpi_meter_missing_file(tmp_path):
    meter = AcpiPowerMeter("BAT9", root=tmp_path)
    meter.end_measurement()
    assert meter.power() == 0.0
    assert meter.dev_capacity() == 0.0


def test_sysfs_negative_power_is_absolute(tmp_path):
    _supply(tmp_path, "A", power_now=15000000, energy_now=1000000)
    _supply(tmp_path, "B", power_now=-15000000, energy_now=1000000)
    a = SysfsPowerMeter("A", root=tmp_path)
    b = SysfsPowerMeter("B", root=tmp_path)
    a.end_measurement()
    b.end_measurement()
    assert a.power() > 0
    assert a.power() == b.power()


def test_sysfs_charge_path_matches_energy_path(tmp_path):
    _supply(tmp_path, "E", power_now=10000000, energy_now=24000000)
    _supply(tmp_path, "C", current_now=1000000, charge_now=2000000, voltage_now=12000000)
    energy = SysfsPowerMeter("E", root=tmp_path)
    charge = SysfsPowerMeter("C", root=tmp_path)
    energy.end_measurement()
    charge.end_measurement()
    assert charge.dev_capacity() == pytest.approx(energy.dev_capacity())
    # 1 A at 12 V is the same as the current path scaled by voltage
    assert charge.power() == pytest.approx(12.0)


def test_sysfs_status_sets_discharging(tmp_path):
    _supply(tmp_path, "BAT0", status="Discharging", power_now=1000000, energy_now=1000000)
    _supply(tmp_path, "BAT1", status="Charging", power_now=1000000, energy_now=1000000)
    discharging = SysfsPowerMeter("BAT0", root=tmp_path)
    charging = SysfsPowerMeter("BAT1", root=tmp_path)
    discharging.end_measurement()
    charging.end_measurement()
    assert discharging.discharging is True
    assert charging.discharging is False


def test_sysfs_not_present(tmp_path):
    _supply(tmp_path, "BAT0", present=0, status="Discharging", power_now=5000000, energy_now=5000000)
    meter = SysfsPowerMeter("BAT0", root=tmp_path)
    meter.end_measurement()
    assert meter.power() == 0.0
    assert meter.dev_capacity() == 0.0
    assert meter.discharging is False


def test_sysfs_without_voltage_keeps_zero(tmp_path):
    _supply(tmp_path, "BAT0", current_now=1000000, charge_now=1000000)
    meter = SysfsPowerMeter("BAT0", root=tmp_path)
    meter.end_measurement()
    assert meter.power() == 0.0
    assert meter.dev_capacity() == 0.0


def test_opal_sensor_scales_linearly(tmp_path):
    one = tmp_path / "power1"
    three = tmp_path / "power3"
    one.write_text("1000000\n")
    three.write_text("3000000\n")
    a = OpalSensorsPowerMeter(one)
    b = OpalSensorsPowerMeter(three)
    assert b.power() == pytest.approx(3 * a.power())
    assert a.dev_capacity() == 0.0


def test_opal_sensor_missing(tmp_path):
    assert OpalSensorsPowerMeter(tmp_path / "nope").power() == 0.0