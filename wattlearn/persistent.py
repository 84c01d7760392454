"""Saving and loading past results and learned parameters."""

from __future__ import annotations

import os
import re
import sys
from pathlib import Path

from .parameters import MAX_KEEP, MAX_PARAM, ResultBundle, get_param_directory

RESULTS_FILE = "saved_results.powertop"
PARAMETERS_FILE = "saved_parameters.powertop"

_LEADING_FLOAT = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def _resolve(path, default_name):
    return get_param_directory(default_name) if path is None else os.fspath(path)


def _scan_float(text):
    match = _LEADING_FLOAT.match(text)
    return float(match.group(1)) if match else None


def _keep(model, bundle):
    if len(model.past_results) >= MAX_PARAM:
        model.past_results[50 + model.rng.randrange(MAX_KEEP)] = bundle
    else:
        model.past_results.append(bundle)


def save_all_results(model, path=None):
    """Write every past result to a file; returns whether it was written."""
    path = _resolve(path, RESULTS_FILE)
    names = sorted(model.result_index.items())
    chunks = []
    for bundle in model.past_results:
        chunks.append(f"{bundle.power:.5f}\n")
        chunks.extend(
            f"{name}\t{model.get_result_value(index, bundle):.5f}\n" for name, index in names
        )
        chunks.append(":\n")
    try:
        with open(path, "w", encoding="utf-8") as handle:
            handle.write("".join(chunks))
    except OSError:
        print(f"Cannot save to file {path}")
        return False
    return True


def close_results(model):
    """Forget all past results."""
    model.past_results.clear()


def load_results(model, path=None):
    """Append the results stored in a file to the model; returns how many were read."""
    path = _resolve(path, RESULTS_FILE)
    try:
        text = Path(path).read_text(encoding="utf-8", errors="replace")
    except OSError:
        print(f"Cannot load from file {path}")
        return 0

    lines = text.split("\n")
    if text and not text.endswith("\n"):
        # A final read past the end still closes an unterminated bundle.
        lines.append("")

    bundle = ResultBundle()
    first = True
    count = 0
    for line in lines:
        if first:
            if line:
                value = _scan_float(line)
                if value is not None:
                    bundle.power = value
                    if bundle.power < model.min_power:
                        model.min_power = bundle.power
            first = False
            continue
        if len(line) < 3:
            _keep(model, bundle)
            bundle = ResultBundle()
            first = True
            count += 1
            continue
        name, sep, rest = line.partition("\t")
        if not sep:
            continue
        value = _scan_float(rest)
        model.set_result_value(name, 0.0 if value is None else value, bundle)

    print(f"Loaded {count} prior measurements", file=sys.stderr)
    return count


def save_parameters(model, path=None):
    """Write the learned parameters once the fit can be trusted; returns whether written."""
    if not model.global_power_valid():
        return False
    path = _resolve(path, PARAMETERS_FILE)
    values = model.all_parameters.parameters
    lines = "".join(
        f"{name}\t{values[index] if index < len(values) else 0.0:.9g}\n"
        for name, index in sorted(model.param_index.items())
    )
    try:
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(lines)
    except OSError:
        print(f"Cannot save to file {path}")
        return False
    return True


def load_parameters(model, path=None):
    """Set parameter values from a file; returns whether the file was read."""
    path = _resolve(path, PARAMETERS_FILE)
    try:
        text = Path(path).read_text(encoding="utf-8", errors="replace")
    except OSError:
        print(f"Cannot load from file {path}")
        print(
            "File will be loaded after taking minimum number of measurement(s) "
            "with battery only "
        )
        return False

    for line in text.splitlines():
        name, sep, rest = line.partition("\t")
        if not sep:
            continue
        value = _scan_float(rest)
        model.set_parameter_value(name, 0.0 if value is None else value)
    return True