"""Settings for the dnsmasq metrics sidecar."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class DNSProbeOption:
    """A periodic DNS health check and latency probe.

    label names the health check URL, server is the "host:port" endpoint
    that queries go to, name is the name to resolve, interval is the time
    between probes in seconds and qtype is the record type to ask for.
    """

    label: str
    server: str
    name: str
    interval: float
    qtype: int


@dataclass
class Options:
    """Options for the sidecar daemon."""

    dnsmasq_addr: str = "127.0.0.1"
    dnsmasq_port: int = 53
    dnsmasq_poll_interval_ms: int = 5000

    probes: list[DNSProbeOption] = field(default_factory=list)

    prometheus_addr: str = "0.0.0.0"
    prometheus_port: int = 10054
    prometheus_path: str = "/metrics"
    prometheus_namespace: str = "kubedns"