# wattlearn

wattlearn reads how much power a Linux machine draws. It keeps a record of
past measurements and fits the parameters of a power model to them.

## Meters

`wattlearn.meters` reads several kinds of meter:

- `SysfsPowerMeter` reads a battery or UPS under `/sys/class/power_supply`.
  It uses `power_now` and `energy_now`. If those are missing, it works the
  values out from `current_now`, `charge_now` and `voltage_now`. A status of
  `Discharging` marks the meter as discharging.
- `AcpiPowerMeter` reads `/proc/acpi/battery/<name>/state` and converts the
  units to watts, joules and volts. The parsing is done by
  `parse_acpi_battery_state(text)`.
- `OpalSensorsPowerMeter` reads an OPAL hwmon power sensor, which reports
  microwatts.

`wattlearn.extech` has `ExtechPowerMeter`. It polls an Extech power analyser
on a serial device, by default `/dev/ttyUSB0`, in a background thread while a
measurement runs. `decode_extech_value` and `parse_packet` decode the
analyser's packets.

Every meter gives `power()` in watts and `dev_capacity()` in joules.

## Measuring

`wattlearn.measurement.PowerMeasurement` works on a list of meters:

- `detect_power_meters()` finds the meters. It adds sysfs batteries and UPS
  units, then OPAL sensors. ACPI batteries are added only when nothing else
  was found.
- `start()` and `end()` begin and finish a measurement.
- `sample()` adds the energy used since the last sample.
- `global_power()` gives the total power. It is 0.0 unless some meter is
  discharging.
- `joules()` gives the energy used.
- `time_left()` gives the battery time left, in seconds.
- `add_extech(devnode)` adds an Extech analyser to the list.

```python
from wattlearn.parameters import PowerModel
from wattlearn.measurement import PowerMeasurement

model = PowerModel()
measurement = PowerMeasurement(model, [])
measurement.detect_power_meters(
    "/sys/class/power_supply",
    "/sys/devices/platform/opal-sensor/hwmon/hwmon*/power*",
    "/proc/acpi/battery",
)
measurement.start()
# ... let some time pass ...
measurement.sample()
measurement.end()
print(measurement.global_power(), measurement.time_left())
```

A single battery can be read on its own:

```python
from wattlearn.meters import SysfsPowerMeter

meter = SysfsPowerMeter("BAT0", "/sys/class/power_supply")
meter.end_measurement()
print(meter.power(), meter.dev_capacity())
```

## The model

`wattlearn.parameters.PowerModel` holds:

- named parameters (`register_parameter`, `get_parameter_value`,
  `set_parameter_value`)
- named utilisation results (`set_result_value`, `report_utilization`)
- past results (`store_results`)

A parameter is a `ParameterBundle`; a result is a `ResultBundle`.

The estimate for a result is the sum of `power_usage(results, parameters)`
over the devices given to the model. Each device also offers
`device_name()`, `power_valid()` and a `cached_valid` attribute.

`wattlearn.learn.learn_parameters(model, iterations)` adjusts the parameters
to fit the past results. Without debugging it stops after about one second.
It does nothing until there are more past results than parameters.

`wattlearn.persistent` saves and loads the model as tab-separated text:

- `save_all_results` and `load_results` handle the past results.
- `save_parameters` and `load_parameters` handle the parameters.
- `save_parameters` writes only once `global_power_valid()` holds.

The default files are `saved_results.powertop` and `saved_parameters.powertop`.
They live in `/var/cache/powertop` or `/data/local/powertop`, whichever is
writable, and otherwise in the current directory.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Command line

```
wattlearn --help
wattlearn --version
wattlearn --time=30 --iteration=3
```

The command must run as root. Before it measures, it does four things:

- raises the open-file limit
- loads the `cpufreq_stats` and, on x86, `msr` kernel modules
- mounts debugfs if it is not mounted
- loads any saved results and parameters

It then measures in a loop. Each interval lasts `-t/--time` seconds (default
20). During an interval it samples every `--sample` seconds (default 5). After
each interval it prints the power, the energy and the battery time left, and
refines the model. Press Ctrl-C to stop. On the way out it saves the results
and the parameters.

Options:

| Option | What it does |
| --- | --- |
| `-C/--csv[=file]` | Takes `-i/--iteration` measurements and writes a CSV report (default `powertop.csv`), then exits. |
| `-r/--html[=file]` | Does the same as `--csv`, but writes an HTML report (default `powertop.html`). |
| `-w/--workload=command` | Measures while a shell command runs, instead of for a fixed time. |
| `--extech[=devnode]` | Adds an Extech analyser. |
| `--debug` | Runs a long, verbose fit, prints the parameter table, and exits. |
| `-q/--quiet` | Silences stderr. |
| `--auto-tune` | Takes one short measurement and leaves. |

A report has one row per iteration. Each row gives the seconds, the power in
watts and the energy in joules.

## What it does not do

- There is no interactive full-screen display.
- There is no tuning of power settings. `--auto-tune` and `--auto-tune-dump`
  only end the run after the first measurement.
- `--calibrate` only initialises and runs no calibration.
- There is no per-process, per-CPU or per-device accounting. The command gives
  the model no devices, so its power estimates come only from what a caller
  supplies through the library.