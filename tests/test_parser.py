"""Tests for the argument parser and its boundary validation."""

import argparse

import pytest

from logbook_cleaner import LogLevel, ModernStrictArgumentParser, create_parser


def test_defaults() -> None:
    ns = create_parser().parse_args(["-f", "backups", "-c", "3"])
    assert ns.folders == ["backups"]
    assert ns.zipfiles == []
    assert ns.count == 3
    assert ns.age == 0
    assert ns.dry_run is False
    assert ns.quiet is False
    assert ns.verbose == LogLevel.WARN
    assert ns.age_type == "mtime"


def test_all_options() -> None:
    ns = create_parser().parse_args(["-f", "a", "b", "-z", "c.zip", "-a", "30", "-c", "0", "-t", "-q", "-V", "debug"])
    assert ns.folders == ["a", "b"]
    assert ns.zipfiles == ["c.zip"]
    assert ns.age == 30
    assert ns.count == 0
    assert ns.dry_run is True
    assert ns.quiet is True
    assert ns.verbose == LogLevel.DEBUG


@pytest.mark.parametrize("flag", ["--test", "-t", "--dry-run", "-X"])
def test_dry_run_aliases(flag: str) -> None:
    assert create_parser().parse_args(["-z", "a.zip", "-a", "1", flag]).dry_run is True


@pytest.mark.parametrize(
    "argv, level",
    [
        (["-v"], LogLevel.INFO),
        (["--debug", "3"], LogLevel.DEBUG),
        (["-d", "w"], LogLevel.WARN),
        (["--verbose", "error"], LogLevel.ERROR),
    ],
)
def test_verbose_levels(argv: list[str], level: LogLevel) -> None:
    assert create_parser().parse_args(["-f", "x", "-a", "1"] + argv).verbose == level


@pytest.mark.parametrize(
    "argv, error",
    [
        (["-f", "x"], "You must specify either age (-a), count (-c), or both"),
        (["-a", "3"], "You must specify either folders (-f), zipfiles (-z), or both"),
        (["-f", "x", "-a", "0", "-c", "0"], "must not both be 0"),
        (["-f", "x", "-a", "0"], "must not both be 0"),
        (["-f", "x", "-c", "-1"], "must be an integer >= 0"),
        (["-f", "x", "-a", "ten"], "must be an integer >= 0"),
        (["-f", "x", "-a", "1", "-V", "loud"], "Invalid verbose value"),
    ],
)
def test_invalid_arguments(argv: list[str], error: str, capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        create_parser().parse_args(argv)
    assert exc.value.code == 2
    assert error in capsys.readouterr().err


def test_errors_are_collected(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit):
        create_parser().parse_args([])
    err = capsys.readouterr().err
    assert "either age" in err
    assert "either folders" in err


@pytest.mark.parametrize(
    "argv",
    [
        ["-f", "x", "-c", "1", "-c", "2"],
        ["-f", "x", "--count", "1", "--count", "2"],
        ["-f", "x", "-c", "1", "--count=2"],
        ["-f", "x", "-c", "1", "-t", "--dry-run"],
    ],
)
def test_duplicate_flags_raise_system_exit(argv: list[str], capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        create_parser().parse_known_args(argv)
    assert exc.value.code == 2
    assert "Duplicate flag" in capsys.readouterr().err


@pytest.mark.parametrize(
    "argv, suggest",
    [
        (["-f", "x", "-c", "1", "--cuont"], "--count"),
        (["-f", "x", "-c", "1", "--unknown-option"], None),
    ],
)
def test_unknown_option(argv: list[str], suggest: str, capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        create_parser().parse_known_args(argv)
    assert exc.value.code == 2
    err = capsys.readouterr().err
    assert f"Unknown option: {argv[-1]}" in err
    if suggest:
        assert f"did you mean {suggest}?" in err
    else:
        assert "did you mean" not in err


@pytest.mark.parametrize("value, expected", [("0", 0), ("7", 7), ("365", 365)])
def test_non_negative_int_argument(value: str, expected: int) -> None:
    assert ModernStrictArgumentParser().non_negative_int_argument(value) == expected


@pytest.mark.parametrize("value", ["-1", "abc", "4.2", "", " "])
def test_non_negative_int_argument_invalid(value: str) -> None:
    with pytest.raises(argparse.ArgumentTypeError):
        ModernStrictArgumentParser().non_negative_int_argument(value)
