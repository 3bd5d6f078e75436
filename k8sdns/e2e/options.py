"""Settings for the end-to-end test environment."""

from __future__ import annotations

from dataclasses import dataclass

ETCD_IMAGE = "quay.io/coreos/etcd:v3.0.14"
HYPERKUBE_IMAGE = "k8s.gcr.io/hyperkube:v1.5.1"
DNSMASQ_IMAGE = "k8s.gcr.io/k8s-dns-dnsmasq-amd64:1.14.5"


@dataclass
class Options:
    """Paths, commands and images used by the end-to-end tests."""

    prefix: str = ""
    docker: str = ""
    kubectl: str = ""

    base_dir: str = ""
    work_dir: str = ""

    etcd_image: str = ""
    hyperkube_image: str = ""
    cluster_ip_range: str = ""
    dnsmasq_image: str = ""


def default_options(base_dir: str, work_dir: str) -> Options:
    """Return the default options for running the end-to-end tests."""
    return Options(
        prefix="xxx",
        kubectl="kubectl",
        base_dir=base_dir,
        work_dir=work_dir,
        docker="docker",
        etcd_image=ETCD_IMAGE,
        hyperkube_image=HYPERKUBE_IMAGE,
        dnsmasq_image=DNSMASQ_IMAGE,
        cluster_ip_range="10.0.0.0/24",
    )