"""A thin command-line shim over a Docker daemon."""

from __future__ import annotations

import abc
import os
import subprocess
import time
from typing import Sequence

from k8sdns.e2e.logger import get_logger

DEFAULT_SOCKET = "unix:///var/run/docker.sock"
DEFAULT_CIDR = "10.123.0.0/24"
DEFAULT_BRIDGE = "docker0"


class Docker(abc.ABC):
    """Operations on a Docker instance; failures are reported as fatal."""

    @abc.abstractmethod
    def start(self) -> None:
        """Start the daemon if it is managed here."""

    @abc.abstractmethod
    def stop(self) -> None:
        """Stop the daemon if it is managed here."""

    @abc.abstractmethod
    def pull(self, *images: str) -> None:
        """Pull images."""

    @abc.abstractmethod
    def run(self, *args: str) -> str:
        """Call "docker run" with args and return the container id."""

    @abc.abstractmethod
    def remove(self, tag: str) -> None:
        """Remove the container named by tag."""

    @abc.abstractmethod
    def kill(self, tag: str) -> None:
        """Kill the container named by tag."""

    @abc.abstractmethod
    def list_containers(self, filter: str) -> list[str]:
        """List ids of running containers matching filter; "" lists all."""


def _succeeds(command: Sequence[str]) -> bool:
    try:
        result = subprocess.run(
            list(command),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
    except OSError:
        return False
    return result.returncode == 0


class DockerWrapper(Docker):
    """Drives Docker through its command-line client."""

    def __init__(
        self,
        docker_exec: str = "docker",
        manage_daemon: bool = False,
        base_dir: str = "/",
        cidr: str = DEFAULT_CIDR,
        bridge: str = DEFAULT_BRIDGE,
        socket: str = DEFAULT_SOCKET,
    ) -> None:
        self.docker_exec = docker_exec
        self.manage_daemon = manage_daemon
        self.base_dir = base_dir
        self.cidr = cidr
        self.bridge = bridge
        self.socket = socket
        self._process: subprocess.Popen[bytes] | None = None

    def start(self) -> None:
        if not self.manage_daemon:
            return
        log = get_logger()

        exec_dir = self.base_dir + "/var/lib/docker"
        graph_dir = self.base_dir + "/var/run/docker"
        for directory in (exec_dir, graph_dir):
            try:
                os.makedirs(directory, mode=0o755, exist_ok=True)
            except OSError as exc:
                log.fatal(str(exc))

        pidfile = self.base_dir + "/pid"
        self.socket = "unix://" + self.base_dir + "/var/run/docker.sock"

        self._ensure_bridge()

        args = [
            self.docker_exec,
            "daemon",
            "--bridge=" + self.bridge,
            "--exec-root=" + exec_dir,
            "--graph=" + graph_dir,
            "--host=" + self.socket,
            "--pidfile=" + pidfile,
        ]
        log.log(f"Starting Docker {args}")
        try:
            self._process = subprocess.Popen(["sudo", *args])
        except OSError as exc:
            log.fatal(str(exc))

        self._wait_for_start()

    def stop(self) -> None:
        if not self.manage_daemon:
            return
        log = get_logger()
        if self._process is None:
            log.fatal("docker daemon was not started")
        # The daemon runs as root, so it has to be killed through sudo.
        pid = self._process.pid
        if not _succeeds(["sudo", "kill", str(pid)]):
            log.fatal(f"could not kill docker daemon (pid {pid})")
        status = self._process.wait()
        log.log(f"Docker exited with {status}")
        self._process = None

    def pull(self, *images: str) -> None:
        for image in images:
            self._run_command(["-H", self.socket, "pull", image])

    def run(self, *args: str) -> str:
        log = get_logger()
        command = ["-H", self.socket, "run", *args]
        log.log(f"docker run {command}")
        try:
            result = subprocess.run(
                [self.docker_exec, *command],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                check=False,
            )
        except OSError as exc:
            log.fatal(f"docker could not be run: {exc}")
        output = result.stdout or ""
        log.log_with_prefix("docker", output)
        if result.returncode != 0:
            log.log_with_prefix("docker", output)
            log.fatal(f"docker returned exit code {result.returncode}")
        # The output is the id of the new container.
        return output.strip()

    def remove(self, tag: str) -> None:
        self._run_command(["-H", self.socket, "rm", "-f", tag])

    def kill(self, tag: str) -> None:
        self._run_command(["-H", self.socket, "kill", tag])

    def list_containers(self, filter: str) -> list[str]:
        log = get_logger()
        args = ["-H", self.socket, "ps", "-q"]
        if filter:
            args += ["--filter", filter]
        log.log(f"docker {args}")
        try:
            result = subprocess.run(
                [self.docker_exec, *args],
                stdout=subprocess.PIPE,
                text=True,
                check=False,
            )
        except OSError as exc:
            log.fatal(f"Error getting containers: {exc}")
        if result.returncode != 0:
            log.fatal(f"Error getting containers: exit status {result.returncode}")
        return [tag.strip() for tag in (result.stdout or "").split("\n") if tag.strip()]

    def _run_command(self, args: list[str]) -> None:
        log = get_logger()
        log.log(f"docker {args}")
        try:
            result = subprocess.run(
                [self.docker_exec, *args],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                check=False,
            )
        except OSError as exc:
            log.fatal(str(exc))
        if result.returncode != 0:
            log.log_with_prefix("docker", result.stdout or "")
            log.fatal(f"docker {args} exited with status {result.returncode}")

    def _ensure_bridge(self) -> None:
        log = get_logger()
        if _succeeds(["ip", "link", "show", self.bridge]):
            log.log(f"Bridge device {self.bridge} exists")
            return

        log.log(f"Creating bridge device {self.bridge} ({self.cidr})")
        for command in (
            ["sudo", "brctl", "addbr", self.bridge],
            ["sudo", "ip", "addr", "add", self.cidr, "dev", self.bridge],
            ["sudo", "ip", "link", "set", "dev", self.bridge, "up"],
        ):
            if not _succeeds(command):
                log.fatal(f"command failed: {' '.join(command)}")

    def _wait_for_start(self) -> None:
        while not _succeeds([self.docker_exec, "-H", self.socket, "info"]):
            time.sleep(0.1)


def new_docker() -> DockerWrapper:
    """Return a Docker for the default instance running on the host."""
    return DockerWrapper(
        docker_exec="docker",
        manage_daemon=False,
        base_dir="/",
        cidr=DEFAULT_CIDR,
        bridge=DEFAULT_BRIDGE,
        socket=DEFAULT_SOCKET,
    )