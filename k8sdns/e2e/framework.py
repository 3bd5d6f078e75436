"""The shared state of an end-to-end test run."""

from __future__ import annotations

import os
import subprocess
import sys

from k8sdns.e2e.cluster import Cluster
from k8sdns.e2e.docker import Docker, new_docker
from k8sdns.e2e.logger import get_logger
from k8sdns.e2e.options import Options, default_options
from k8sdns.e2e.util import can_sudo, keep_sudo_active


class Framework:
    """Options, Docker, the cluster and the background processes of a run.

    Set failed to True when a test case fails; tear_down then dumps the
    logs of every background process.
    """

    def __init__(self, options: Options, docker: Docker) -> None:
        self.options = options
        self.docker = docker
        self.cluster = Cluster(options, docker)
        self.processes: dict[str, subprocess.Popen[bytes]] = {}
        self.failed = False

    def set_up(self) -> None:
        self.cluster.set_up()

    def tear_down(self) -> None:
        """Stop the cluster and, if a test failed, dump process logs to stderr."""
        self.cluster.tear_down()
        if not self.failed:
            return
        log = get_logger()
        for name in self.processes:
            log.log(f"Failure detected, dumping logs for '{name}'")
            for stream, path in (
                ("stdout", self.stdout_logfile(name)),
                ("stderr", self.stderr_logfile(name)),
            ):
                log.log(f"==== {name} {stream} ====")
                try:
                    with open(path, encoding="utf-8", errors="replace") as handle:
                        sys.stderr.write(handle.read())
                except OSError as exc:
                    log.fatal(f"Could not open {path}: {exc}")

    def path(self, relative: str) -> str:
        """Return the absolute path of a path relative to the repository."""
        return os.path.abspath(f"{self.options.base_dir}/{relative}")

    def stdout_logfile(self, name: str) -> str:
        return f"{self.options.work_dir}/logs/{name}.out"

    def stderr_logfile(self, name: str) -> str:
        return f"{self.options.work_dir}/logs/{name}.err"

    def run_in_background(
        self, name: str, binary: str, *args: str
    ) -> subprocess.Popen[bytes]:
        """Start a process whose output goes to its log files."""
        log = get_logger()
        log.log(f"Starting {name} ({binary} {list(args)})")
        if name in self.processes:
            log.fatal(f"Cannot run more than one process with the same name: {name}")

        try:
            stdout = open(self.stdout_logfile(name), "wb")
        except OSError as exc:
            log.fatal(f"Could not create {self.stdout_logfile(name)}: {exc}")
        try:
            stderr = open(self.stderr_logfile(name), "wb")
        except OSError as exc:
            stdout.close()
            log.fatal(f"Could not create {self.stderr_logfile(name)}: {exc}")

        with stdout, stderr:
            process = subprocess.Popen([binary, *args], stdout=stdout, stderr=stderr)
        self.processes[name] = process
        return process


_framework: Framework | None = None


def init_framework(base_dir: str, work_dir: str) -> Framework:
    """Create the global framework; sudo must be usable without a password."""
    global _framework
    log = get_logger()
    log.log(f"Creating framework (baseDir={base_dir}, workDir={work_dir})")

    if not can_sudo():
        log.fatal(
            "e2e test requires `sudo` to be active. "
            "Run `sudo -v` before running the e2e test."
        )
    keep_sudo_active()

    _framework = Framework(default_options(base_dir, work_dir), new_docker())

    logs_dir = work_dir + "/logs"
    try:
        os.makedirs(logs_dir, mode=0o755, exist_ok=True)
    except OSError as exc:
        log.fatal(f"Could not mkdir {work_dir}: {exc}")
    return _framework


def get_framework() -> Framework:
    """Return the global framework; init_framework must have been called."""
    if _framework is None:
        get_logger().fatal("InitFramework must be called before use")
    return _framework