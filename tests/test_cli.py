from unittest import mock

import pytest

from wattlearn.cli import (
    Options,
    UsageError,
    clamp_refresh_timeout,
    get_nr_open,
    main,
    parse_args,
    usage_text,
    version_text,
)


def test_defaults():
    opts = parse_args([])
    assert opts == Options()
    assert opts.iterations == 1
    assert opts.sample_interval == 5
    assert opts.time_out == 20
    assert opts.report is None


def test_csv_default_filename():
    opts = parse_args(["--csv"])
    assert opts.report == "csv"
    assert opts.filename == "powertop.csv"


def test_html_attached_short_argument():
    opts = parse_args(["-rout.html"])
    assert opts.report == "html"
    assert opts.filename == "out.html"


def test_short_optional_argument_not_taken_from_next_word():
    opts = parse_args(["-C", "report.csv"])
    assert opts.filename == "powertop.csv"


def test_empty_csv_filename_rejected():
    with pytest.raises(UsageError, match="Invalid CSV filename"):
        parse_args(["--csv="])


def test_required_short_arguments():
    opts = parse_args(["-i", "3", "-t7", "-w", "make"])
    assert opts.iterations == 3
    assert opts.time_out == 7
    assert opts.workload == "make"


def test_missing_required_argument():
    with pytest.raises(UsageError, match="requires an argument"):
        parse_args(["-t"])


def test_long_optional_arguments():
    opts = parse_args(["--iteration", "--sample=7", "--time=12"])
    assert opts.iterations == 1
    assert opts.sample_interval == 7
    assert opts.time_out == 12


def test_non_numeric_value_reads_as_zero():
    assert parse_args(["-i", "abc"]).iterations == 0


def test_sample_has_no_short_form():
    with pytest.raises(UsageError, match="invalid option"):
        parse_args(["-s", "3"])


def test_auto_tune_dump_implies_auto_tune():
    opts = parse_args(["--auto-tune-dump"])
    assert opts.auto_tune and opts.auto_tune_dump


def test_exact_long_name_beats_prefix():
    opts = parse_args(["--auto-tune"])
    assert opts.auto_tune and not opts.auto_tune_dump


def test_ambiguous_prefix():
    with pytest.raises(UsageError, match="ambiguous"):
        parse_args(["--auto"])


def test_unique_prefix_accepted():
    assert parse_args(["--vers"]).action == "version"


def test_no_argument_option_rejects_value():
    with pytest.raises(UsageError, match="doesn't allow"):
        parse_args(["--help=x"])


def test_unknown_long_option():
    with pytest.raises(UsageError, match="unrecognized"):
        parse_args(["--bogus"])


def test_help_stops_parsing():
    opts = parse_args(["-h", "--bogus"])
    assert opts.action == "help"


def test_extech_default_device():
    opts = parse_args(["--extech", "--extech=/dev/ttyS1"])
    assert opts.extech == ["/dev/ttyUSB0", "/dev/ttyS1"]


def test_debug_and_quiet_flags():
    opts = parse_args(["--debug", "-q", "-c"])
    assert opts.debug and opts.quiet and opts.calibrate


@pytest.mark.parametrize("text", ["0", "", "abc"])
def test_refresh_timeout_unchanged(text):
    assert clamp_refresh_timeout(text, 20) is None


def test_nr_open_read(tmp_path):
    path = tmp_path / "nr_open"
    path.write_text("4096\n")
    assert get_nr_open(path) == 4096


def test_nr_open_default(tmp_path):
    assert get_nr_open(tmp_path / "missing") == 1024 * 1024


def test_version_text():
    assert "2.15" in version_text()
    assert version_text().endswith("\n")


def test_usage_lists_options():
    text = usage_text()
    for option in ("--auto-tune", "--csv", "--extech", "--workload", "--help"):
        assert option in text


def test_main_version(capsys):
    assert main(["--version"]) == 0
    assert capsys.readouterr().out == version_text()


def test_main_help(capsys):
    assert main(["-h"]) == 0
    assert capsys.readouterr().out == usage_text()


def test_main_bad_option(capsys):
    assert main(["--bogus"]) == 1
    assert "unrecognized option" in capsys.readouterr().err


def test_main_empty_html_filename(capsys):
    assert main(["--html="]) == 1
    assert "Invalid HTML filename" in capsys.readouterr().err


def test_main_requires_root(capsys):
    with mock.patch("os.geteuid", return_value=1000):
        assert main([]) == 1
    assert "must be run with root privileges" in capsys.readouterr().out