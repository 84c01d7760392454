"""Fitting the power model parameters to past measurements."""

from __future__ import annotations

import time

from .parameters import BASE_POWER

_TIME_BUDGET = 1.0
_MAX_VALUE = 5000


def calculate_params(model, params=None):
    """Score a parameter bundle against every past result and return the score."""
    params = model.all_parameters if params is None else params
    params.score = 0.0
    for result in model.past_results:
        model.compute_bundle(params, result)
    return params.score


def _random_disturb(retry_left, rng):
    # Non-independent variables converge better with an occasional wrong move.
    if retry_left < 10:
        return False
    return rng.randrange(500) == 7


def _try_zero(value, rng):
    if value > 0.01 and rng.randrange(100) == 1:
        return True
    return rng.randrange(5) == 1


def _weight(bundle, index):
    return bundle.weights[index] if index < len(bundle.weights) else 1.0


def _weed_empties(model, best):
    """Zero every parameter whose removal does not make the fit worse."""
    best_score = best.score
    params = best.parameters
    for i in range(len(params)):
        orgvalue = params[i]
        params[i] = 0.0
        calculate_params(model, best)
        if best.score > best_score:
            params[i] = orgvalue
        else:
            best_score = best.score
    calculate_params(model, best)


def learn_parameters(model, iterations, do_base_power=False, debug=False, rng=None):
    """Adjust the model's parameters to fit its past results.

    Nothing is fitted until there is at least one more past result than there
    are parameters; then None is returned. Otherwise the final score is
    returned. Without ``debug`` the search stops after about a second.
    """
    rng = model.rng if rng is None else rng
    best = model.all_parameters
    samples = len(model.past_results)
    if samples <= len(best.parameters):
        return None

    model.precompute_valid()
    bpi = model.param_index_of(BASE_POWER)

    calculate_params(model, best)
    best_score = best.score

    if iterations < 25:
        delta = 0.001 / 0.5 ** (iterations / 2.0)
    else:
        delta = 0.001 / 0.8 ** (iterations / 2.0)
    delta = min(delta, 0.2)
    if best_score / samples < 4 and delta > 0.05:
        delta = 0.05

    if debug:
        print(f"Delta starts at {delta:5.3f}")

    params = best.parameters
    min_power = model.min_power
    if params[bpi] > min_power * 0.9:
        params[bpi] = min_power * 0.9

    # Give up a little base power so the other parameters have room to move.
    if do_base_power and not debug:
        params[bpi] = params[bpi] * 0.9998

    start = time.monotonic()
    retry = iterations
    prevparam = -1
    locked = False

    while retry:
        retry -= 1
        changed = 0
        bestparam = -1
        newvalue = 0.0

        if time.monotonic() - start > _TIME_BUDGET and not debug:
            retry = 0

        orgscore = best_score = calculate_params(model, best)

        for i in range(1, len(params)):
            weight = delta * _weight(best, i)

            orgvalue = value = params[i]
            value = 0.1 if value <= 0.001 else value * (1 + weight)
            if i == bpi:
                value = min(value, min_power)
                orgvalue = min(orgvalue, min_power)
            value = min(value, _MAX_VALUE)

            params[i] = value
            calculate_params(model, best)
            if best.score < best_score or _random_disturb(retry, rng):
                best_score = best.score
                newvalue = value
                bestparam = i
                changed += 1

            value = orgvalue / (1 + weight)
            if value < 0.0001:
                value = 0.0
            if _try_zero(value, rng):
                value = 0.0
            value = min(value, _MAX_VALUE)

            if orgvalue != value:
                params[i] = value
                calculate_params(model, best)
                if best.score + 0.00001 < best_score or (
                    _random_disturb(retry, rng) and value > 0.0
                ):
                    best_score = best.score
                    newvalue = value
                    bestparam = i
                    changed += 1
            params[i] = orgvalue

        if not changed:
            if not locked:
                delta *= 0.5 if iterations < 25 else 0.8
            locked = False
            prevparam = -1
        else:
            if debug:
                print(f"Retry is {retry} ")
                print(f"delta is {delta:5.4f}")
                print(f"Best parameter is {bestparam} ")
                print(f"Changing score from {orgscore:4.3f} to {best_score:4.3f}")
                print(f"Changing value from {params[bestparam]:4.3f} to {newvalue:4.3f}")
            params[bestparam] = newvalue
            if prevparam == bestparam:
                delta *= 1.1
            prevparam = bestparam
            locked = True

        if delta < 0.001 and not locked:
            break

        if retry % 50 == 49:
            _weed_empties(model, best)

    if iterations > 50:
        _weed_empties(model, best)

    if debug:
        print(f"Final score {best.score / samples:4.2f} ({samples} points)")
    return best.score