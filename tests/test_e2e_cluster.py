import os
import subprocess
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from unittest import mock

import pytest

from k8sdns.e2e.cluster import Cluster
from k8sdns.e2e.docker import Docker
from k8sdns.e2e.logger import FatalError
from k8sdns.e2e.options import default_options


class FakeDocker(Docker):
    def __init__(self, listed=()):
        self.pulled = []
        self.runs = []
        self.killed = []
        self.removed = []
        self.listed = list(listed)
        self.filters = []

    def start(self):
        pass

    def stop(self):
        pass

    def pull(self, *images):
        self.pulled.extend(images)

    def run(self, *args):
        self.runs.append(args)
        return f"container-{len(self.runs)}"

    def remove(self, tag):
        self.removed.append(tag)

    def kill(self, tag):
        self.killed.append(tag)

    def list_containers(self, filter):
        self.filters.append(filter)
        return list(self.listed)


def _ok(*args, **kwargs):
    return subprocess.CompletedProcess(args, 0)


def _fail(*args, **kwargs):
    return subprocess.CompletedProcess(args, 1)


@pytest.fixture
def cluster(tmp_path):
    options = default_options(str(tmp_path / "base"), str(tmp_path / "work"))
    return Cluster(options, FakeDocker(listed=["k8s_a", "k8s_b"]))


def test_manifest_dir_is_absolute_under_base_dir(cluster, tmp_path):
    expected = os.path.abspath(f"{tmp_path / 'base'}/test/e2e/cluster/manifests")
    assert cluster.manifest_dir == expected
    assert cluster.var_lib_kubelet == "/var/lib/kubelet"


def test_start_and_stop_etcd(cluster):
    cluster.start_etcd()
    assert cluster.docker.runs == [("-d", "--net=host", cluster.options.etcd_image)]
    assert cluster.containers.etcd == "container-1"
    cluster.stop_etcd()
    assert cluster.docker.killed == ["container-1"]
    assert cluster.containers.etcd == ""
    cluster.stop_etcd()
    assert cluster.docker.killed == ["container-1"]


def test_start_api_server_arguments(cluster):
    cluster.start_api_server()
    args = cluster.docker.runs[0]
    assert args[0] == "-d"
    assert f"--volume={cluster.options.base_dir}:/src:ro" in args
    assert f"--volume={cluster.options.work_dir}:/data:rw" in args
    assert args[args.index(cluster.options.hyperkube_image) + 1 :] == (
        "/hyperkube",
        "apiserver",
        "--insecure-bind-address=0.0.0.0",
        "--service-cluster-ip-range=10.0.0.1/24",
        "--etcd_servers=http://127.0.0.1:2379",
        "--v=2",
    )
    cluster.stop_api_server()
    assert cluster.docker.killed == [args and "container-1"]
    assert cluster.containers.api == ""


def test_start_kubelet_runs_container_with_shared_mount(cluster):
    with mock.patch("subprocess.run", side_effect=_ok) as run:
        cluster.start_kubelet()
    commands = [call.args[0] for call in run.call_args_list]
    assert commands[0] == ["sudo", "mkdir", "-p", "/var/lib/kubelet"]
    assert ["sudo", "mount", "--make-rshared", "/var/lib/kubelet"] in commands
    args = cluster.docker.runs[0]
    assert "--volume=/var/lib/kubelet:/var/lib/kubelet:shared" in args
    assert "--config=/etc/kubernetes/manifests-e2e" in args
    assert cluster.containers.kubelet == "container-1"


def test_start_kubelet_fails_when_mkdir_fails(cluster):
    with mock.patch("subprocess.run", side_effect=_fail):
        with pytest.raises(FatalError, match="Could not create /var/lib/kubelet"):
            cluster.start_kubelet()
    assert cluster.docker.runs == []


def test_stop_kubelet_kills_created_containers(cluster):
    with mock.patch("subprocess.run", side_effect=_ok):
        cluster.start_kubelet()
    with mock.patch("subprocess.run", side_effect=_ok) as run:
        cluster.stop_kubelet()
    assert cluster.docker.killed == ["container-1", "k8s_a", "k8s_b"]
    assert cluster.docker.filters == ["name=k8s_*"]
    commands = [call.args[0] for call in run.call_args_list]
    assert commands == [
        ["sudo", "umount", "/var/lib/kubelet"],
        ["sudo", "rm", "-rf", "/var/lib/kubelet"],
    ]
    assert cluster.containers.kubelet == ""


def test_stop_kubelet_without_start_does_nothing(cluster):
    with mock.patch("subprocess.run", side_effect=_ok) as run:
        cluster.stop_kubelet()
    assert run.call_count == 0
    assert cluster.docker.killed == []


class _Handler(BaseHTTPRequestHandler):
    def do_GET(self):
        self.send_response(404)
        self.end_headers()

    def log_message(self, format, *args):
        pass


def test_wait_for_api_server_succeeds_on_any_response(cluster):
    server = HTTPServer(("127.0.0.1", 0), _Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        cluster.api_server_url = f"http://127.0.0.1:{server.server_address[1]}"
        cluster.startup_timeout = 5.0
        cluster.poll_interval = 0.05
        assert cluster.wait_for_api_server() is None
        assert cluster.docker.runs == []
    finally:
        server.shutdown()
        server.server_close()


def test_wait_for_api_server_times_out(cluster):
    server = HTTPServer(("127.0.0.1", 0), _Handler)
    port = server.server_address[1]
    server.server_close()
    cluster.api_server_url = f"http://127.0.0.1:{port}"
    cluster.startup_timeout = 0.2
    cluster.poll_interval = 0.05
    with pytest.raises(FatalError, match="API server failed to start"):
        cluster.wait_for_api_server()


def test_tear_down_stops_all_components(cluster):
    with mock.patch("subprocess.run", side_effect=_ok):
        cluster.start_etcd()
        cluster.start_api_server()
        cluster.start_kubelet()
        cluster.tear_down()
    assert cluster.docker.killed == [
        "container-3",
        "k8s_a",
        "k8s_b",
        "container-2",
        "container-1",
    ]