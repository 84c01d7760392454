"""Power model parameters, measured results and the fitting state around them."""

from __future__ import annotations

import math
import os
import random
import sys
from dataclasses import dataclass, field

MAX_KEEP = 700
MAX_PARAM = 750

BASE_POWER = "base power"

_CACHE_DIRS = ("/var/cache/powertop", "/data/local/powertop")


def get_param_directory(filename):
    """Return where a results or parameters file lives.

    The last writable cache directory wins; with none writable the bare
    filename is returned.
    """
    path = filename
    for directory in _CACHE_DIRS:
        if os.access(directory, os.W_OK):
            path = os.path.join(directory, filename)
    return path


def _grow(values, size, fill):
    if len(values) < size:
        values.extend([fill] * (size - len(values)))


def _value_at(values, index):
    return values[index] if 0 <= index < len(values) else 0.0


@dataclass
class ParameterBundle:
    """A set of model parameters with their learning weights and fit score."""

    score: float = 0.0
    guessed_power: float = 0.0
    actual_power: float = 0.0
    parameters: list = field(default_factory=list)
    weights: list = field(default_factory=list)

    def clone(self):
        """Copy the parameter values; score and guess start from zero."""
        return ParameterBundle(
            score=0.0,
            guessed_power=0.0,
            actual_power=self.actual_power,
            parameters=list(self.parameters),
        )


@dataclass
class ResultBundle:
    """One measurement: total power and per-item utilisation."""

    joules: float = 0.0
    power: float = 0.0
    utilization: list = field(default_factory=list)

    def clone(self):
        """Copy power and utilisation into a fresh bundle."""
        return ResultBundle(power=self.power, utilization=list(self.utilization))


class PowerModel:
    """Named parameters and results, the devices that use them, and past results.

    Devices are objects offering ``device_name()``, ``power_usage(results,
    parameters)``, ``power_valid()`` and a writable ``cached_valid`` attribute.
    """

    def __init__(self, devices=None, rng=None):
        self.devices = list(devices) if devices is not None else []
        self.rng = rng if rng is not None else random.Random()
        self.all_parameters = ParameterBundle()
        self.all_results = ResultBundle()
        self.past_results = []
        self.param_index = {}
        self.result_index = {}
        self._max_param_index = 1
        self._max_result_index = 1
        self._precomputed_valid = False
        self.min_power = 50000.0
        self.global_power_override = False
        self.global_run_times = 0
        self.checkpoint = None

    def param_index_of(self, name):
        """Return the index of a parameter, allocating one for a new name."""
        index = self.param_index.get(name)
        if index is None:
            self._max_param_index += 1
            index = self.param_index[name] = self._max_param_index
        return index

    def result_index_of(self, name):
        """Return the index of a result, allocating one for a new name."""
        index = self.result_index.get(name)
        if index is None:
            self._max_result_index += 1
            index = self.result_index[name] = self._max_result_index
        return index

    def _param_key(self, key):
        return key if isinstance(key, int) else self.param_index_of(key)

    def _result_key(self, key):
        return key if isinstance(key, int) else self.result_index_of(key)

    def register_parameter(self, name, default_value=0.0, weight=1.0):
        """Declare a parameter; an unset value takes the default."""
        index = self.param_index_of(name)
        bundle = self.all_parameters
        _grow(bundle.parameters, index + 1, 0.0)
        _grow(bundle.weights, index + 1, 1.0)
        if bundle.parameters[index] <= 0.0001:
            bundle.parameters[index] = default_value
        bundle.weights[index] = weight

    def set_parameter_value(self, name, value, bundle=None):
        bundle = self.all_parameters if bundle is None else bundle
        index = self.param_index_of(name)
        _grow(bundle.parameters, index + 1, 0.0)
        _grow(bundle.weights, index + 1, 1.0)
        bundle.parameters[index] = value

    def get_parameter_value(self, key, bundle=None):
        """Value of a parameter by name or index; unregistered ones read as 0."""
        bundle = self.all_parameters if bundle is None else bundle
        index = self._param_key(key)
        if index >= len(bundle.parameters):
            print(f"BUG: requesting unregistered parameter {index}", file=sys.stderr)
            return 0.0
        return bundle.parameters[index]

    def get_parameter_weight(self, index, bundle=None):
        bundle = self.all_parameters if bundle is None else bundle
        return bundle.weights[index]

    def get_result_value(self, key, bundle=None):
        """Utilisation of a result by name or index; unknown ones read as 0."""
        bundle = self.all_results if bundle is None else bundle
        index = self._result_key(key)
        if index >= len(bundle.utilization):
            return 0.0
        return bundle.utilization[index]

    def set_result_value(self, key, value, bundle=None):
        bundle = self.all_results if bundle is None else bundle
        index = self._result_key(key)
        _grow(bundle.utilization, index + 1, 0.0)
        bundle.utilization[index] = value

    def report_utilization(self, key, value, bundle=None):
        self.set_result_value(key, value, bundle)

    def result_device_exists(self, name):
        return any(device.device_name() == name for device in self.devices)

    def compute_bundle(self, parameters=None, results=None):
        """Estimate power for one result and add its weighted squared error to the score."""
        parameters = self.all_parameters if parameters is None else parameters
        results = self.all_results if results is None else results
        bpi = self.param_index_of(BASE_POWER)

        power = sum(device.power_usage(results, parameters) for device in self.devices)

        parameters.actual_power = results.power
        parameters.guessed_power = power
        # Non-idle data points weigh heavier.
        parameters.score += results.power * (power - results.power) ** 2
        _grow(parameters.parameters, bpi + 1, 0.0)
        parameters.parameters[bpi] = power
        return power

    def precompute_valid(self):
        for device in self.devices:
            device.cached_valid = device.power_valid()
        self._precomputed_valid = True

    def bundle_power(self, parameters, results):
        """Base power plus the estimate of every device whose power is valid."""
        bpi = self.param_index_of(BASE_POWER)
        if not self._precomputed_valid:
            self.precompute_valid()
        power = _value_at(parameters.parameters, bpi)
        for device in self.devices:
            if device.cached_valid:
                power += device.power_usage(results, parameters)
        return power

    def dump_parameter_bundle(self, bundle=None):
        """Print the parameter table and return its text."""
        bundle = self.all_parameters if bundle is None else bundle
        lines = ["", "", "Parameter state ", "-" * 34, "Value\t\tName"]
        for name, index in sorted(self.param_index.items()):
            lines.append(f"{_value_at(bundle.parameters, index):5.2f}\t\t{name} ({index})")
        score = math.sqrt(
            bundle.score / (0.001 + len(self.past_results)) / self.average_power()
        )
        lines += [
            "",
            f"Score:  {score:5.1f}  ({bundle.score:5.1f})",
            f"Guess:  {bundle.guessed_power:5.1f}",
            f"Actual: {bundle.actual_power:5.1f}",
            "-" * 34,
        ]
        text = "\n".join(lines) + "\n"
        print(text, end="")
        return text

    def dump_result_bundle(self, bundle=None):
        """Print the utilisation table and return its text."""
        bundle = self.all_results if bundle is None else bundle
        lines = ["", "", "Utilisation state ", "-" * 34, "Value\t\tName"]
        for name, index in sorted(self.result_index.items()):
            lines.append(f"{_value_at(bundle.utilization, index):5.2f}%\t\t{name}({index})")
        lines += ["", f"Power: {bundle.power:5.1f}", "-" * 34]
        text = "\n".join(lines) + "\n"
        print(text, end="")
        return text

    def store_results(self, duration, power=None):
        """Keep a copy of the current result if the interval was long enough.

        ``power``, when given, becomes the current result's power first.
        Returns whether a result was kept.
        """
        if duration < 5:
            return False
        if power is not None:
            self.all_results.power = power
        if self.all_results.power <= 0.01:
            return False
        snapshot = self.all_results.clone()
        if len(self.past_results) >= MAX_PARAM:
            self.past_results[50 + self.rng.randrange(MAX_KEEP)] = snapshot
        else:
            self.past_results.append(snapshot)
        if len(self.past_results) % 10 == 0 and self.checkpoint is not None:
            self.checkpoint(self)
        return True

    def dump_past_results(self):
        """Print estimated against actual power for past results and return the text."""
        parts = []
        for start in range(0, len(self.past_results), 10):
            chunk = self.past_results[start:start + 10]
            estimates = "".join(
                f"{self.bundle_power(self.all_parameters, result):6.2f}  " for result in chunk
            )
            actuals = "".join(f"{result.power:6.2f}  " for result in chunk)
            parts.append(f"Est    {estimates}\nActual {actuals}\n\n")
        text = "".join(parts)
        print(text, end="")
        return text

    def average_power(self):
        if not self.past_results:
            return 0.0001
        total = sum(result.power for result in self.past_results)
        return total / len(self.past_results) + 0.0001

    def utilization_power_valid(self, key):
        """Whether a result's utilisation varies across past results."""
        index = self._result_key(key)
        if index <= 0 or not self.past_results:
            return False
        first = self.past_results[0]
        if index >= len(first.utilization):
            return False
        first_value = first.utilization[index]
        for result in self.past_results[1:]:
            value = self.get_result_value(index, result)
            if value < first_value - 0.0001 or value > first_value + 0.0001:
                return True
        return False

    def global_power_valid(self):
        """Whether enough results exist for the model fit to be trusted."""
        needed = 3 * len(self.all_parameters.parameters)
        if len(self.past_results) > needed:
            return True
        if self.past_results and self.global_run_times < 1:
            print(
                f"To show power estimates do {needed - len(self.past_results)} "
                "measurement(s) connected to battery only"
            )
            self.global_run_times += 1
        return bool(self.global_power_override)