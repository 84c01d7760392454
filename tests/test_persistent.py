import random

from wattlearn.parameters import MAX_PARAM, PowerModel, ResultBundle
from wattlearn.persistent import (
    close_results,
    load_parameters,
    load_results,
    save_all_results,
    save_parameters,
)


def model_with_results():
    model = PowerModel(rng=random.Random(0))
    for power, cpu, disk in ((12.5, 0.25, 1.0), (20.0, 0.75, 3.0)):
        bundle = ResultBundle(power=power)
        model.set_result_value("cpu", cpu, bundle)
        model.set_result_value("disk", disk, bundle)
        model.past_results.append(bundle)
    return model


def test_results_file_format(tmp_path):
    model = PowerModel()
    bundle = ResultBundle(power=12.5)
    model.set_result_value("cpu", 0.25, bundle)
    model.past_results.append(bundle)
    path = tmp_path / "results"
    assert save_all_results(model, path) is True
    assert path.read_text() == "12.50000\ncpu\t0.25000\n:\n"


def test_results_round_trip(tmp_path):
    model = model_with_results()
    path = tmp_path / "results"
    save_all_results(model, path)

    loaded = PowerModel(rng=random.Random(0))
    assert load_results(loaded, path) == 2
    assert [b.power for b in loaded.past_results] == [12.5, 20.0]
    for original, copy in zip(model.past_results, loaded.past_results):
        for name in ("cpu", "disk"):
            assert loaded.get_result_value(name, copy) == model.get_result_value(name, original)


def test_load_results_lowers_min_power(tmp_path):
    path = tmp_path / "results"
    save_all_results(model_with_results(), path)
    loaded = PowerModel()
    load_results(loaded, path)
    assert loaded.min_power == 12.5


def test_load_results_missing_file(tmp_path, capsys):
    model = PowerModel()
    assert load_results(model, tmp_path / "missing") == 0
    assert "Cannot load from file" in capsys.readouterr().out
    assert model.past_results == []


def test_unterminated_bundle_is_kept(tmp_path):
    path = tmp_path / "results"
    path.write_text("7.0\ncpu\t1.5")
    model = PowerModel()
    assert load_results(model, path) == 1
    assert model.past_results[0].power == 7.0
    assert model.get_result_value("cpu", model.past_results[0]) == 1.5


def test_load_results_replaces_when_full(tmp_path):
    path = tmp_path / "results"
    path.write_text("9.0\ncpu\t2.0\n:\n")
    model = PowerModel(rng=random.Random(5))
    model.past_results = [ResultBundle(power=1.0) for _ in range(MAX_PARAM)]
    assert load_results(model, path) == 1
    assert len(model.past_results) == MAX_PARAM
    assert sum(1 for b in model.past_results if b.power == 9.0) == 1


def test_close_results():
    model = model_with_results()
    close_results(model)
    assert model.past_results == []


def test_save_results_to_bad_path(tmp_path, capsys):
    model = model_with_results()
    assert save_all_results(model, tmp_path / "nope" / "results") is False
    assert "Cannot save to file" in capsys.readouterr().out


def test_save_parameters_needs_valid_fit(tmp_path):
    model = PowerModel()
    model.register_parameter("cpu-wakeups", 39.5)
    path = tmp_path / "params"
    assert save_parameters(model, path) is False
    assert not path.exists()


def test_parameters_round_trip(tmp_path):
    model = PowerModel()
    model.register_parameter("base power", 100, 0.5)
    model.register_parameter("cpu-wakeups", 39.5)
    model.register_parameter("gpu-operations", 0.5576)
    model.global_power_override = True
    path = tmp_path / "params"
    assert save_parameters(model, path) is True
    assert "cpu-wakeups\t39.5\n" in path.read_text()

    loaded = PowerModel()
    assert load_parameters(loaded, path) is True
    for name in ("base power", "cpu-wakeups", "gpu-operations"):
        assert loaded.get_parameter_value(name) == model.get_parameter_value(name)


def test_load_parameters_skips_lines_without_tab(tmp_path):
    path = tmp_path / "params"
    path.write_text("garbage line\nxwakes\t0.1\n")
    model = PowerModel()
    load_parameters(model, path)
    assert model.get_parameter_value("xwakes") == 0.1
    assert "garbage line" not in model.param_index


def test_load_parameters_missing_file(tmp_path, capsys):
    model = PowerModel()
    assert load_parameters(model, tmp_path / "missing") is False
    out = capsys.readouterr().out
    assert "Cannot load from file" in out
    assert "File will be loaded after taking minimum number" in out