"""Periodic DNS probes that publish their latency and health."""

from __future__ import annotations

import json
import logging
import random
import threading
import time
from http import HTTPStatus

import dns.exception
import dns.message
import dns.query
import dns.rdataclass

from k8sdns.sidecar.metrics import (
    Counter,
    Histogram,
    HttpServer,
    Registry,
    exponential_buckets,
    metric_name,
)
from k8sdns.sidecar.options import DNSProbeOption, Options

_log = logging.getLogger(__name__)

_PROBE_SUBSYSTEM = "probe"
_WAITING = "waiting for first probe"


def _split_host_port(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep or "]" in port:
        return address.strip("[]"), 53
    return host.strip("[]"), int(port)


class LoopDelayer:
    """Paces the probe loop to one probe per interval."""

    def __init__(self) -> None:
        self.interval = 0.0

    def start(self, interval: float) -> None:
        """Remember the interval and wait a random part of it.

        The random start keeps probes from all firing at the same moment.
        """
        self.interval = interval
        if interval > 0:
            time.sleep(random.uniform(0, interval))

    def sleep(self, latency: float) -> None:
        """Sleep for what is left of the interval after latency seconds."""
        remaining = self.interval - latency
        if remaining > 0:
            _log.debug("Sleeping %s", remaining)
            time.sleep(remaining)


class DNSProbe:
    """Resolves a name against a server over and over and records the result."""

    timeout = 2.0

    def __init__(self, option: DNSProbeOption, delayer: LoopDelayer | None = None) -> None:
        self.option = option
        self.delayer = delayer
        self.last_resolve_latency = 0.0
        self.last_error: str | None = _WAITING
        self.latency_histogram: Histogram | None = None
        self.error_count: Counter | None = None
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None

    def start(self, options: Options, registry: Registry, http_server: HttpServer) -> None:
        """Register the health check and metrics and start probing."""
        _log.info("Starting dnsProbe %s", self.option)
        with self._lock:
            self.last_error = _WAITING

        http_server.add_route(f"/healthcheck/{self.option.label}", self._http_handler)
        self._register_metrics(options, registry)

        if self.delayer is None:
            self.delayer = LoopDelayer()

        self._thread = threading.Thread(target=self._loop, daemon=True)
        self._thread.start()

    def _register_metrics(self, options: Options, registry: Registry) -> None:
        namespace = options.prometheus_namespace
        label = self.option.label
        histogram = Histogram(
            metric_name(namespace, _PROBE_SUBSYSTEM, f"{label}_latency_ms"),
            f"Latency of the DNS probe request {label}",
            exponential_buckets(0.25, 2, 16),  # 0.25 ms to about 8 seconds
        )
        registry.register(histogram)
        errors = Counter(
            metric_name(namespace, _PROBE_SUBSYSTEM, f"{label}_errors"),
            f"Count of errors in name resolution of {label}",
        )
        registry.register(errors)
        self.latency_histogram = histogram
        self.error_count = errors

    def _loop(self) -> None:
        assert self.delayer is not None
        self.delayer.start(self.option.interval)
        while True:
            latency = self.probe_once()
            self.delayer.sleep(latency)

    def probe_once(self) -> float:
        """Send one query, record the outcome and return its latency in seconds."""
        host, port = _split_host_port(self.option.server)
        _log.debug("Sending DNS request @%s %s", self.option.server, self.option.name)
        error: str | None = None
        started = time.monotonic()
        try:
            response = dns.query.udp(
                self.make_query(), host, timeout=self.timeout, port=port
            )
        except (dns.exception.DNSException, OSError) as exc:
            error = str(exc) or type(exc).__name__
            response = None
        latency = time.monotonic() - started
        _log.debug("Got response, err=%s after %s", error, latency)

        if response is not None and not response.answer:
            error = f'no RRs for domain "{self.option.name}"'

        self.update(error, latency)
        return latency

    def update(self, error: str | None, latency: float) -> None:
        """Record the result of a probe; error is None on success."""
        with self._lock:
            if error is None:
                self.last_resolve_latency = latency
                self.last_error = None
                if self.latency_histogram is not None:
                    self.latency_histogram.observe(latency * 1000)
            else:
                _log.info("DNS resolution error for %s: %s", self.option.label, error)
                self.last_resolve_latency = 0.0
                self.last_error = error
                if self.error_count is not None:
                    self.error_count.add(1)

    def make_query(self) -> dns.message.QueryMessage:
        """Build the recursive IN query the probe sends."""
        return dns.message.make_query(
            self.option.name, self.option.qtype, dns.rdataclass.IN
        )

    def health(self) -> tuple[int, dict[str, object]]:
        """Return the HTTP status and the JSON body of the health check."""
        with self._lock:
            if self.last_error is None:
                return HTTPStatus.OK, {
                    "IsOk": True,
                    "LatencySeconds": self.last_resolve_latency,
                    "Err": "",
                }
            return HTTPStatus.SERVICE_UNAVAILABLE, {
                "IsOk": False,
                "LatencySeconds": 0,
                "Err": self.last_error,
            }

    def _http_handler(self) -> tuple[int, str, bytes]:
        status, body = self.health()
        return status, "application/json", json.dumps(body, separators=(",", ":")).encode()