import argparse

import pytest

from k8sdns.version import (
    VERSION,
    VersionValue,
    add_version_flag,
    format_version_value,
    parse_version_value,
    print_and_exit_if_requested,
)


@pytest.mark.parametrize("text", ["1", "t", "T", "TRUE", "true", "True"])
def test_parse_true(text):
    assert parse_version_value(text) is VersionValue.TRUE


@pytest.mark.parametrize("text", ["0", "f", "F", "FALSE", "false", "False"])
def test_parse_false(text):
    assert parse_version_value(text) is VersionValue.FALSE


def test_parse_raw():
    assert parse_version_value("raw") is VersionValue.RAW


@pytest.mark.parametrize("text", ["", "yes", "RAW", "2"])
def test_parse_invalid(text):
    with pytest.raises(ValueError):
        parse_version_value(text)


@pytest.mark.parametrize("value", list(VersionValue))
def test_format_round_trip(value):
    assert parse_version_value(format_version_value(value)) is value


def _parser():
    parser = argparse.ArgumentParser()
    add_version_flag(parser)
    return parser


@pytest.mark.parametrize(
    "argv, expected",
    [
        ([], VersionValue.FALSE),
        (["--version"], VersionValue.TRUE),
        (["--version=raw"], VersionValue.RAW),
        (["--version=false"], VersionValue.FALSE),
    ],
)
def test_flag_parsing(argv, expected):
    assert _parser().parse_args(argv).version is expected


def test_flag_rejects_bad_value():
    with pytest.raises(SystemExit) as excinfo:
        _parser().parse_args(["--version=maybe"])
    assert excinfo.value.code == 2


def test_print_true_exits(capsys):
    with pytest.raises(SystemExit) as excinfo:
        print_and_exit_if_requested(VersionValue.TRUE)
    assert excinfo.value.code == 0
    assert capsys.readouterr().out == f"Kube-DNS {VERSION}\n"


def test_print_raw_exits_with_quoted_version(capsys):
    with pytest.raises(SystemExit) as excinfo:
        print_and_exit_if_requested(VersionValue.RAW)
    assert excinfo.value.code == 0
    assert capsys.readouterr().out == f'"{VERSION}"\n'


def test_false_does_nothing(capsys):
    print_and_exit_if_requested(VersionValue.FALSE)
    assert capsys.readouterr().out == ""