"""The sidecar daemon: DNS probes plus dnsmasq cache metrics."""

from __future__ import annotations

import logging
import time

from k8sdns.dnsmasq.metrics import MetricName, MetricsClient, MetricsError
from k8sdns.sidecar.dnsprobe import DNSProbe
from k8sdns.sidecar.metrics import (
    DnsmasqMetrics,
    HttpServer,
    Registry,
    initialize_metrics,
)
from k8sdns.sidecar.options import Options

_log = logging.getLogger(__name__)


class Server:
    """Runs the configured probes and exports dnsmasq metrics."""

    def __init__(self) -> None:
        self.options: Options | None = None
        self.registry = Registry()
        self.http_server: HttpServer | None = None
        self.metrics_client: MetricsClient | None = None
        self.dnsmasq_metrics: DnsmasqMetrics | None = None
        self.probes: list[DNSProbe] = []

    def run(self, options: Options) -> None:
        """Start the probes and the metrics endpoint and poll forever."""
        self.options = options
        _log.info("Starting server (options %s)", options)

        self.http_server = HttpServer(options.prometheus_addr, options.prometheus_port)
        for probe_option in options.probes:
            probe = DNSProbe(probe_option)
            self.probes.append(probe)
            probe.start(options, self.registry, self.http_server)

        self.dnsmasq_metrics = initialize_metrics(options, self.registry, self.http_server)
        self.metrics_client = MetricsClient(options.dnsmasq_addr, options.dnsmasq_port)

        interval = options.dnsmasq_poll_interval_ms / 1000
        while True:
            self.poll_once()
            time.sleep(interval)

    def poll_once(self) -> dict[MetricName, int] | None:
        """Fetch dnsmasq's metrics once and export them.

        Returns the metrics, or None if they could not be fetched, in
        which case the error counter is increased.
        """
        if self.metrics_client is None or self.dnsmasq_metrics is None:
            raise RuntimeError("server is not running")
        try:
            metrics = self.metrics_client.get_metrics()
        except MetricsError as exc:
            _log.warning("Error getting metrics from dnsmasq: %s", exc)
            self.dnsmasq_metrics.errors.add(1)
            return None
        _log.debug("DnsMasq metrics %s", metrics)
        self.dnsmasq_metrics.export(metrics)
        return metrics