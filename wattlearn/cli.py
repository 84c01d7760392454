"""Command line entry point: measure power, learn the model, keep the results."""

from __future__ import annotations

import csv
import html
import os
import platform
import re
import resource
import shutil
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, field

from .learn import learn_parameters
from .measurement import PowerMeasurement
from .parameters import PowerModel
from .persistent import (
    close_results,
    load_parameters,
    load_results,
    save_all_results,
    save_parameters,
)

PROG = "wattlearn"
VERSION = "2.15"

NR_OPEN_PATH = "/proc/sys/fs/nr_open"
NR_OPEN_DEFAULT = 1024 * 1024
DEBUGFS = "/sys/kernel/debug"
MAX_REFRESH_TIMEOUT = 32

_NONE, _OPTIONAL, _REQUIRED = "none", "optional", "required"

_LONG_OPTIONS = {
    "auto-tune": (_NONE, "auto_tune"),
    "auto-tune-dump": (_NONE, "auto_tune_dump"),
    "calibrate": (_NONE, "calibrate"),
    "csv": (_OPTIONAL, "csv"),
    "debug": (_NONE, "debug"),
    "extech": (_OPTIONAL, "extech"),
    "html": (_OPTIONAL, "html"),
    "iteration": (_OPTIONAL, "iteration"),
    "quiet": (_NONE, "quiet"),
    "sample": (_OPTIONAL, "sample"),
    "time": (_OPTIONAL, "time"),
    "workload": (_OPTIONAL, "workload"),
    "version": (_NONE, "version"),
    "help": (_NONE, "help"),
}

_SHORT_OPTIONS = {
    "c": (_NONE, "calibrate"),
    "C": (_OPTIONAL, "csv"),
    "r": (_OPTIONAL, "html"),
    "i": (_REQUIRED, "iteration"),
    "q": (_NONE, "quiet"),
    "t": (_REQUIRED, "time"),
    "w": (_REQUIRED, "workload"),
    "V": (_NONE, "version"),
    "h": (_NONE, "help"),
}

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")
_LEADING_UNSIGNED = re.compile(r"\s*([+-]?)(0[xX][0-9a-fA-F]+|0[0-7]*|[1-9]\d*)")


class UsageError(Exception):
    """The command line could not be accepted."""


@dataclass
class Options:
    """What the command line asked for."""

    auto_tune: bool = False
    auto_tune_dump: bool = False
    calibrate: bool = False
    report: str | None = None
    filename: str = ""
    debug: bool = False
    extech: list = field(default_factory=list)
    iterations: int = 1
    quiet: bool = False
    sample_interval: int = 5
    time_out: int = 20
    workload: str = ""
    action: str | None = None


def _atoi(text):
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


def _apply(opts, key, arg):
    """Record one option; returns True when parsing should stop."""
    if key == "auto_tune_dump":
        opts.auto_tune_dump = True
        opts.auto_tune = True
    elif key == "auto_tune":
        opts.auto_tune = True
    elif key == "calibrate":
        opts.calibrate = True
    elif key in ("csv", "html"):
        opts.report = key
        opts.filename = arg if arg is not None else f"powertop.{key}"
        if not opts.filename:
            raise UsageError(f"Invalid {key.upper()} filename")
    elif key == "debug":
        opts.debug = True
    elif key == "extech":
        opts.extech.append(arg if arg is not None else "/dev/ttyUSB0")
    elif key == "iteration":
        opts.iterations = _atoi(arg) if arg is not None else 1
    elif key == "quiet":
        opts.quiet = True
    elif key == "sample":
        opts.sample_interval = _atoi(arg) if arg is not None else 5
    elif key == "time":
        opts.time_out = _atoi(arg) if arg is not None else 20
    elif key == "workload":
        opts.workload = arg if arg is not None else ""
    elif key in ("version", "help"):
        opts.action = key
        return True
    return False


def _match_long(name):
    if name in _LONG_OPTIONS:
        return name
    candidates = [option for option in _LONG_OPTIONS if option.startswith(name)]
    if not candidates:
        raise UsageError(f"{PROG}: unrecognized option '--{name}'")
    if len(candidates) > 1:
        raise UsageError(f"{PROG}: option '--{name}' is ambiguous")
    return candidates[0]


def parse_args(argv):
    """Parse command line arguments into Options; raises UsageError on bad input.

    Parsing stops at --version or --help, which are recorded in ``action``.
    Arguments that are not options are ignored.
    """
    opts = Options()
    args = list(argv)
    pos = 0
    while pos < len(args):
        arg = args[pos]
        pos += 1
        if arg == "--":
            break
        if arg.startswith("--"):
            name, sep, value = arg[2:].partition("=")
            full = _match_long(name)
            kind, key = _LONG_OPTIONS[full]
            if sep and kind == _NONE:
                raise UsageError(f"{PROG}: option '--{full}' doesn't allow an argument")
            if _apply(opts, key, value if sep else None):
                return opts
            continue
        if not arg.startswith("-") or arg == "-":
            continue
        cluster = arg[1:]
        while cluster:
            letter, cluster = cluster[0], cluster[1:]
            if letter not in _SHORT_OPTIONS:
                raise UsageError(f"{PROG}: invalid option -- '{letter}'")
            kind, key = _SHORT_OPTIONS[letter]
            value = None
            if kind == _OPTIONAL:
                value, cluster = (cluster or None), ""
            elif kind == _REQUIRED:
                if cluster:
                    value, cluster = cluster, ""
                elif pos < len(args):
                    value = args[pos]
                    pos += 1
                else:
                    raise UsageError(f"{PROG}: option requires an argument -- '{letter}'")
            if _apply(opts, key, value):
                return opts
    return opts


def version_text():
    return f"{PROG} version {VERSION}\n"


def usage_text():
    lines = [
        f"Usage: {PROG} [OPTIONS]",
        "",
        "     --auto-tune\t sets all tunable options to their GOOD setting",
        "     --auto-tune-dump\t print auto-tune commands to STDOUT *instead* of executing them",
        " -c, --calibrate\t runs in calibration mode",
        " -C, --csv[=filename]\t generate a csv report",
        "     --debug\t\t run in \"debug\" mode",
        "     --extech[=devnode]\t uses an Extech Power Analyzer for measurements",
        " -r, --html[=filename]\t generate a html report",
        " -i, --iteration[=iterations] number of times to run each test",
        " -q, --quiet\t\t suppress stderr output",
        " -s, --sample[=seconds]\t interval for power consumption measurement",
        " -t, --time[=seconds]\t generate a report for 'x' seconds",
        " -w, --workload[=workload] file to execute for workload",
        " -V, --version\t\t print version information",
        " -h, --help\t\t print this help menu",
        "",
        "For more help please refer to the manual page",
        "",
    ]
    return "\n".join(lines) + "\n"


def clamp_refresh_timeout(text, current=None):
    """Interpret a typed refresh timeout.

    Only the first three characters count, read as an unsigned number in C
    notation (decimal, 0x hex or 0 octal). Returns the new timeout, capped at
    32 seconds, or None when the input is zero or not a number, in which case
    ``current`` stays in force.
    """
    match = _LEADING_UNSIGNED.match(text[:3])
    if match is None:
        return None
    value = int(match.group(2), 0)
    if match.group(1) == "-" and value:
        value = 2 ** 64 - value
    if not value:
        return None
    return min(value, MAX_REFRESH_TIMEOUT)


def get_nr_open(path=NR_OPEN_PATH):
    """The kernel's limit on open files per process, or 1048576 if unknown."""
    try:
        with open(path, encoding="ascii", errors="replace") as handle:
            text = handle.read()
    except OSError:
        return NR_OPEN_DEFAULT
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else NR_OPEN_DEFAULT


def _err(message):
    print(message, file=sys.stderr)


def _checkroot():
    if os.geteuid() != 0:
        print(f"{PROG} {VERSION} must be run with root privileges.")
        print("exiting...")
        raise SystemExit(1)


def _quiet(command):
    return subprocess.run(
        command, shell=True, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL
    ).returncode


def _debugfs_mounted():
    try:
        with open("/proc/mounts", encoding="utf-8", errors="replace") as handle:
            for line in handle:
                fields = line.split()
                if len(fields) >= 3 and fields[1] == DEBUGFS and fields[2] == "debugfs":
                    return True
    except OSError:
        pass
    return False


class _Session:
    """One run of the program: the model, the meters and the loop state."""

    def __init__(self, opts):
        self.opts = opts
        self.model = PowerModel()
        self.model.checkpoint = save_all_results
        self.measurement = PowerMeasurement(self.model)
        self.initialized = False
        self.leave = False
        self.measurement_time = 0.0

    def init(self, auto_tune):
        if self.initialized:
            return
        _checkroot()

        limit = get_nr_open()
        try:
            resource.setrlimit(resource.RLIMIT_NOFILE, (limit, limit))
        except (ValueError, OSError):
            pass

        if _quiet("/sbin/modprobe cpufreq_stats"):
            _err("modprobe cpufreq_stats failed")
        if platform.machine() in ("x86_64", "i386", "i486", "i586", "i686"):
            if _quiet("/sbin/modprobe msr"):
                _err("modprobe msr failed")

        if not _debugfs_mounted():
            mount = "/bin/mount" if os.access("/bin/mount", os.X_OK) else "mount"
            if _quiet(f"{mount} -t debugfs debugfs {DEBUGFS}") != 0:
                _err("Failed to mount debugfs!")
                if not auto_tune:
                    _err("exiting...")
                    raise SystemExit(1)
                _err("Should still be able to auto tune...")

        cache = "/var/cache/powertop" if os.access("/var/cache/", os.W_OK) else "/data/local/powertop"
        try:
            os.mkdir(cache, 0o600)
        except OSError:
            pass

        load_results(self.model)
        load_parameters(self.model)

        self.measurement.detect_power_meters()

        model = self.model
        model.register_parameter("base power", 100, 0.5)
        model.register_parameter("cpu-wakeups", 39.5)
        model.register_parameter("cpu-consumption", 1.56)
        model.register_parameter("gpu-operations", 0.5576)
        model.register_parameter("disk-operations-hard", 0.2)
        model.register_parameter("disk-operations", 0.0)
        model.register_parameter("xwakes", 0.1)

        load_parameters(self.model)
        self.initialized = True

    def one_measurement(self, seconds, sample_interval, workload=None):
        """Measure for a while (or while a workload runs); returns the power seen."""
        measurement = self.measurement
        interval = max(sample_interval, 1)
        started = time.monotonic()
        measurement.start()

        if workload:
            stop = threading.Event()

            def background():
                while not stop.wait(interval):
                    measurement.sample()

            thread = threading.Thread(target=background, daemon=True)
            thread.start()
            if subprocess.run(workload, shell=True).returncode:
                _err("Unknown issue running workload!")
            stop.set()
            thread.join()
            measurement.sample()
        else:
            while seconds > 0:
                time.sleep(min(interval, seconds))
                seconds -= interval
                measurement.sample()

        measurement.end()
        self.measurement_time = time.monotonic() - started
        power = measurement.global_power()
        self.model.store_results(self.measurement_time)
        return power

    def make_report(self):
        opts = self.opts
        _err("Preparing to take measurements")
        self.one_measurement(1, opts.sample_interval)

        if not opts.workload:
            _err(f"Taking {opts.iterations} measurement(s) for a duration of "
                 f"{opts.time_out} second(s) each.")
        else:
            _err(f"Measuring workload {opts.workload}.")

        rows = []
        for iteration in range(1, max(opts.iterations, 0) + 1):
            power = self.one_measurement(opts.time_out, opts.sample_interval, opts.workload)
            rows.append((iteration, self.measurement_time, power, self.measurement.joules()))
        _write_report(opts.report, opts.filename, rows)

        learn_parameters(self.model, 50, False)
        save_all_results(self.model)
        save_parameters(self.model)
        return 0


_REPORT_HEADER = ("iteration", "seconds", "power (W)", "energy (J)")


def _format_row(row):
    iteration, seconds, power, joules = row
    return (str(iteration), f"{seconds:.2f}", f"{power:.3f}", f"{joules:.3f}")


def _write_report(kind, filename, rows):
    try:
        with open(filename, "w", encoding="utf-8", newline="") as handle:
            if kind == "csv":
                writer = csv.writer(handle)
                writer.writerow(_REPORT_HEADER)
                writer.writerows(_format_row(row) for row in rows)
            else:
                cells = "".join(f"<th>{html.escape(name)}</th>" for name in _REPORT_HEADER)
                body = "".join(
                    "<tr>" + "".join(f"<td>{html.escape(v)}</td>" for v in _format_row(row)) + "</tr>\n"
                    for row in rows
                )
                handle.write(
                    "<!DOCTYPE html>\n<html><head><title>Power report</title></head><body>\n"
                    f"<table>\n<tr>{cells}</tr>\n{body}</table>\n</body></html>\n"
                )
    except OSError as exc:
        _err(f"Cannot save to file {filename}: {exc.strerror or exc}")
        return
    _err(f"{kind.upper()} report written to {filename}")


def _run(opts):
    session = _Session(opts)
    model = session.model

    if opts.quiet:
        try:
            sys.stderr = open(os.devnull, "a", encoding="utf-8")
        except OSError:
            pass
    for devnode in opts.extech:
        _checkroot()
        session.measurement.add_extech(devnode)
    if opts.calibrate:
        session.init(False)
    if opts.auto_tune:
        session.leave = True

    session.init(opts.auto_tune)

    if opts.report is not None:
        return session.make_report()

    if opts.debug:
        print("Learning debugging enabled")

    learn_parameters(model, 250, False)
    save_parameters(model)

    if opts.debug:
        learn_parameters(model, 1000, True, debug=True)
        model.dump_parameter_bundle()
        return 0

    # The first run is short so nobody waits long for numbers.
    session.one_measurement(1, opts.sample_interval)

    try:
        while not session.leave:
            power = session.one_measurement(opts.time_out, opts.sample_interval)
            left = session.measurement.time_left()
            status = f"{power:.2f} W, {session.measurement.joules():.1f} J"
            if left > 0:
                status += f", {left / 3600:.1f} h left"
            print(status, flush=True)
            learn_parameters(model, 15, False)
    except KeyboardInterrupt:
        pass

    _err(f"Leaving {PROG}")

    save_all_results(model)
    save_parameters(model)
    learn_parameters(model, 500, False)
    save_parameters(model)
    for meter in session.measurement.meters:
        close = getattr(meter, "close", None)
        if close is not None:
            close()
    close_results(model)
    return 0


def main(argv=None):
    """Run the program; returns the exit status."""
    argv = sys.argv[1:] if argv is None else list(argv)
    try:
        opts = parse_args(argv)
    except UsageError as exc:
        _err(str(exc))
        return 1

    if opts.action == "version":
        print(version_text(), end="")
        return 0
    if opts.action == "help":
        print(usage_text(), end="")
        return 0

    try:
        return _run(opts)
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else 1


if __name__ == "__main__":
    sys.exit(main())