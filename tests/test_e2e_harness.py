import os
import threading

import pytest

from k8sdns.e2e.harness import Harness


@pytest.fixture
def harness(tmp_path):
    h = Harness(str(tmp_path), "/bin/nanny", "/bin/mock-dnsmasq")
    h.poll_interval = 0.01
    return h


def test_setup_creates_config_dir(harness, tmp_path):
    assert harness.setup() is None
    assert os.path.isdir(tmp_path / "config")


def test_setup_twice_fails(harness):
    harness.setup()
    with pytest.raises(FileExistsError):
        harness.setup()


def test_configure_writes_and_removes_files(harness, tmp_path):
    harness.setup()
    assert harness.configure('{"acme.local":["1.2.3.4"]}', "[]") is None
    assert (tmp_path / "config" / "stubDomains").read_text() == '{"acme.local":["1.2.3.4"]}'
    assert (tmp_path / "config" / "upstreamNameservers").read_text() == "[]"

    assert harness.configure("", '["5.6.7.8"]') is None
    assert not (tmp_path / "config" / "stubDomains").exists()
    assert (tmp_path / "config" / "upstreamNameservers").read_text() == '["5.6.7.8"]'


def test_configure_empty_when_missing_is_fine(harness, tmp_path):
    harness.setup()
    assert harness.configure("", "") is None
    assert os.listdir(tmp_path / "config") == []


def test_read_output_without_file_is_empty(harness):
    assert harness.read_output() == []


def test_read_output_skips_blank_lines(harness, tmp_path):
    (tmp_path / "args.txt").write_text("first\n\nsecond\n")
    assert harness.read_output() == ["first", "second"]


def test_wait_for_args_matches_last_line(harness, tmp_path):
    (tmp_path / "args.txt").write_text("--runForever\n--server 5.6.7.8 --no-resolv\n")
    assert harness.wait_for_args("--server 5.6.7.8 --no-resolv", timeout=1.0) is None
    assert harness.read_output()[-1] == "--server 5.6.7.8 --no-resolv"


def test_wait_for_args_sees_later_write(harness, tmp_path):
    args = tmp_path / "args.txt"
    args.write_text("old\n")
    timer = threading.Timer(0.1, lambda: args.write_text("old\nnew\n"))
    timer.start()
    try:
        harness.wait_for_args("new", timeout=5.0)
    finally:
        timer.join()
    assert harness.read_output() == ["old", "new"]


def test_wait_for_args_times_out(harness, tmp_path):
    (tmp_path / "args.txt").write_text("a\nb\n")
    with pytest.raises(TimeoutError, match="timeout waiting for line 'a'"):
        harness.wait_for_args("a", timeout=0.05)