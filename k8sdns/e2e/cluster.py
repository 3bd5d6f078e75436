"""A local Kubernetes cluster run in Docker containers for end-to-end tests."""

from __future__ import annotations

import os
import subprocess
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Sequence

from k8sdns.e2e.docker import Docker
from k8sdns.e2e.logger import get_logger
from k8sdns.e2e.options import Options
from k8sdns.e2e.util import make_shared_mount, umount

STARTUP_TIMEOUT = 10.0


@dataclass
class _Containers:
    etcd: str = ""
    api: str = ""
    kubelet: str = ""


def _run(command: Sequence[str]) -> str | None:
    """Run a command; return None on success or a description of the failure."""
    try:
        result = subprocess.run(
            list(command),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
    except OSError as exc:
        return str(exc)
    if result.returncode != 0:
        return f"exit status {result.returncode}"
    return None


class Cluster:
    """etcd, an API server and a kubelet, each in its own container."""

    api_server_url = "http://localhost:8080"
    startup_timeout = STARTUP_TIMEOUT
    poll_interval = 1.0

    def __init__(self, options: Options, docker: Docker) -> None:
        self.options = options
        self.docker = docker
        self.containers = _Containers()
        self.manifest_dir = ""
        self.var_lib_docker = ""
        self.var_lib_kubelet = ""
        self.var_run = ""
        self._resolve_dirs()

    def set_up(self) -> None:
        """Pull the images, start every component and wait for the API server."""
        get_logger().log("SetUp")
        self._resolve_dirs()
        self._pull_images()
        self.start_etcd()
        self.start_api_server()
        self.start_kubelet()
        self.wait_for_api_server()

    def tear_down(self) -> None:
        """Stop every component that is running."""
        get_logger().log("Teardown")
        self.stop_kubelet()
        self.stop_api_server()
        self.stop_etcd()

    def _resolve_dirs(self) -> None:
        self.manifest_dir = os.path.abspath(
            f"{self.options.base_dir}/test/e2e/cluster/manifests"
        )
        self.var_lib_docker = os.path.abspath("/var/lib/docker")
        self.var_lib_kubelet = os.path.abspath("/var/lib/kubelet")
        self.var_run = os.path.abspath("/var/run")

    def _pull_images(self) -> None:
        self.docker.pull(self.options.etcd_image, self.options.hyperkube_image)

    def start_etcd(self) -> None:
        get_logger().log("Starting etcd")
        self.containers.etcd = self.docker.run("-d", "--net=host", self.options.etcd_image)

    def stop_etcd(self) -> None:
        if not self.containers.etcd:
            return
        get_logger().log("Stopping etcd")
        self.docker.kill(self.containers.etcd)
        self.containers.etcd = ""

    def start_api_server(self) -> None:
        get_logger().log("Starting API server")
        self.containers.api = self.docker.run(
            "-d",
            f"--volume={self.options.base_dir}:/src:ro",
            f"--volume={self.options.work_dir}:/data:rw",
            "--net=host",
            "--pid=host",
            self.options.hyperkube_image,
            "/hyperkube",
            "apiserver",
            "--insecure-bind-address=0.0.0.0",
            "--service-cluster-ip-range=10.0.0.1/24",
            "--etcd_servers=http://127.0.0.1:2379",
            "--v=2",
        )

    def stop_api_server(self) -> None:
        if not self.containers.api:
            return
        get_logger().log("Stopping API server")
        self.docker.kill(self.containers.api)
        self.containers.api = ""

    def wait_for_api_server(self) -> None:
        """Wait until the API server answers HTTP; fatal after the startup timeout."""
        log = get_logger()
        deadline = time.monotonic() + self.startup_timeout
        while time.monotonic() < deadline:
            if self._api_server_answers():
                log.log("API server started")
                return
            log.log("Waiting for API server to start")
            time.sleep(self.poll_interval)
        log.fatal("API server failed to start")

    def _api_server_answers(self) -> bool:
        try:
            with urllib.request.urlopen(self.api_server_url, timeout=self.poll_interval):
                return True
        except urllib.error.HTTPError:
            # Any HTTP response, whatever its status, means the server is up.
            return True
        except (OSError, ValueError):
            return False

    def start_kubelet(self) -> None:
        log = get_logger()
        log.log("Starting Kubelet")

        error = _run(["sudo", "mkdir", "-p", self.var_lib_kubelet])
        if error is not None:
            log.fatal(f"Could not create {self.var_lib_kubelet}: {error}")
        make_shared_mount(self.var_lib_kubelet)

        self.containers.kubelet = self.docker.run(
            "-d",
            "--volume=/:/rootfs:ro",  # used by the nsenter mounter
            "--volume=/sys:/sys:ro",
            "--volume=/dev:/dev",
            f"--volume={self.options.base_dir}:/src:ro",
            f"--volume={self.options.work_dir}:/data:rw",
            f"--volume={self.manifest_dir}:/etc/kubernetes/manifests-e2e:ro",
            f"--volume={self.var_lib_docker}:/var/lib/docker:rw",
            f"--volume={self.var_run}:/var/run:rw",
            f"--volume={self.var_lib_kubelet}:/var/lib/kubelet:shared",
            "--net=host",
            "--pid=host",
            "--privileged=true",
            self.options.hyperkube_image,
            "/hyperkube",
            "kubelet",
            "--v=4",
            "--containerized",
            "--hostname-override=0.0.0.0",
            "--address=0.0.0.0",
            "--cluster_dns=10.0.0.10",
            "--cluster_domain=cluster.local",
            "--api-servers=http://localhost:8080",
            "--config=/etc/kubernetes/manifests-e2e",
        )

    def stop_kubelet(self) -> None:
        if not self.containers.kubelet:
            return
        log = get_logger()
        log.log("Stopping Kubelet")

        self.docker.kill(self.containers.kubelet)
        self.containers.kubelet = ""

        # Remove every container the kubelet created.
        for tag in self.docker.list_containers("name=k8s_*"):
            self.docker.kill(tag)

        umount(self.var_lib_kubelet)
        error = _run(["sudo", "rm", "-rf", self.var_lib_kubelet])
        if error is not None:
            log.fatal(f"Could not remove kubelet dir {self.var_lib_kubelet}: {error}")