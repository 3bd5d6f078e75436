"""Counters, histograms and the HTTP endpoint that exposes them."""

from __future__ import annotations

import bisect
import datetime
import itertools
import logging
import math
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Mapping, Protocol, Sequence
from urllib.parse import urlsplit

from k8sdns.dnsmasq.metrics import MetricName
from k8sdns.sidecar.options import Options

_log = logging.getLogger(__name__)

Handler = Callable[[], "tuple[int, str, bytes]"]

_DNSMASQ_SUBSYSTEM = "dnsmasq"
_EXPOSITION_TYPE = "text/plain; version=0.0.4; charset=utf-8"

_DNSMASQ_COUNTERS: dict[MetricName, tuple[str, str]] = {
    MetricName.CACHE_HITS: (
        "hits",
        "Number of DNS cache hits (from start of process)",
    ),
    MetricName.CACHE_MISSES: (
        "misses",
        "Number of DNS cache misses (from start of process)",
    ),
    MetricName.CACHE_EVICTIONS: (
        "evictions",
        "Counter of DNS cache evictions (from start of process)",
    ),
    MetricName.CACHE_INSERTIONS: (
        "insertions",
        "Counter of DNS cache insertions (from start of process)",
    ),
    MetricName.CACHE_SIZE: (
        "max_size",
        "Maximum size of the DNS cache",
    ),
}


def metric_name(namespace: str, subsystem: str, name: str) -> str:
    """Join the non-empty parts of a metric name with underscores."""
    if not name:
        return ""
    return "_".join(part for part in (namespace, subsystem, name) if part)


def exponential_buckets(start: float, factor: float, count: int) -> list[float]:
    """Return count bucket bounds, the first start, each factor times the last."""
    if count < 1:
        raise ValueError("exponential_buckets needs a positive count")
    if start <= 0:
        raise ValueError("exponential_buckets needs a positive start value")
    if factor <= 1:
        raise ValueError("exponential_buckets needs a factor greater than 1")
    return [start * factor**power for power in range(count)]


def _format_value(value: float) -> str:
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if math.isnan(value):
        return "NaN"
    if float(value).is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(float(value))


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


class _Metric(Protocol):
    name: str

    def render(self) -> list[str]: ...


class Counter:
    """A value that only ever goes up."""

    def __init__(self, name: str, help: str) -> None:
        self.name = name
        self.help = help
        self._value = 0.0
        self._lock = threading.Lock()

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def add(self, amount: float) -> None:
        """Increase the counter; a negative amount raises ValueError."""
        if amount < 0:
            raise ValueError("counter cannot decrease in value")
        with self._lock:
            self._value += amount

    def render(self) -> list[str]:
        return [
            f"# HELP {self.name} {_escape_help(self.help)}",
            f"# TYPE {self.name} counter",
            f"{self.name} {_format_value(self.value)}",
        ]


class Histogram:
    """Counts observations into buckets with fixed upper bounds."""

    def __init__(self, name: str, help: str, buckets: Sequence[float]) -> None:
        bounds = [float(bound) for bound in buckets]
        if any(low >= high for low, high in zip(bounds, bounds[1:])):
            raise ValueError("histogram buckets must be in increasing order")
        if bounds and math.isinf(bounds[-1]):
            bounds.pop()
        self.name = name
        self.help = help
        self._bounds = bounds
        self._counts = [0] * (len(bounds) + 1)
        self._sum = 0.0
        self._lock = threading.Lock()

    def observe(self, value: float) -> None:
        """Record one observation."""
        index = bisect.bisect_left(self._bounds, value)
        with self._lock:
            self._counts[index] += 1
            self._sum += value

    @property
    def count(self) -> int:
        with self._lock:
            return sum(self._counts)

    @property
    def sum(self) -> float:
        with self._lock:
            return self._sum

    def buckets(self) -> list[tuple[float, int]]:
        """Return (upper bound, cumulative count) pairs, ending with +Inf."""
        with self._lock:
            counts = list(self._counts)
        uppers = [*self._bounds, math.inf]
        return list(zip(uppers, itertools.accumulate(counts)))

    def render(self) -> list[str]:
        lines = [
            f"# HELP {self.name} {_escape_help(self.help)}",
            f"# TYPE {self.name} histogram",
        ]
        buckets = self.buckets()
        lines.extend(
            f'{self.name}_bucket{{le="{_format_value(upper)}"}} {count}'
            for upper, count in buckets
        )
        lines.append(f"{self.name}_sum {_format_value(self.sum)}")
        lines.append(f"{self.name}_count {buckets[-1][1]}")
        return lines


class Registry:
    """A set of metrics rendered together in the text exposition format."""

    def __init__(self) -> None:
        self._metrics: dict[str, _Metric] = {}
        self._lock = threading.Lock()

    def register(self, metric: _Metric) -> None:
        """Add a metric; registering the same name twice raises ValueError."""
        with self._lock:
            if metric.name in self._metrics:
                raise ValueError(f"duplicate metric registration: {metric.name}")
            self._metrics[metric.name] = metric

    def render(self) -> str:
        with self._lock:
            metrics = [self._metrics[name] for name in sorted(self._metrics)]
        lines = [line for metric in metrics for line in metric.render()]
        return "".join(f"{line}\n" for line in lines)


class HttpServer:
    """A small threaded HTTP server dispatching GET requests by path.

    A handler takes no arguments and returns (status, content type, body).
    """

    def __init__(self, addr: str, port: int) -> None:
        self.addr = addr
        self.port = port
        self._routes: dict[str, Handler] = {}
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    def add_route(self, path: str, handler: Handler) -> None:
        """Serve path with handler; a path can only be added once."""
        if path in self._routes:
            raise ValueError(f"multiple registrations for {path}")
        self._routes[path] = handler

    def start(self) -> None:
        """Bind the listening socket and serve in a background thread."""
        if self._server is not None:
            raise RuntimeError("server already started")
        routes = self._routes

        class _RequestHandler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:
                handler = routes.get(urlsplit(self.path).path)
                if handler is None:
                    status, content_type, body = (
                        HTTPStatus.NOT_FOUND,
                        "text/plain; charset=utf-8",
                        b"404 page not found\n",
                    )
                else:
                    status, content_type, body = handler()
                self.send_response(status)
                self.send_header("Content-Type", content_type)
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, format: str, *args: object) -> None:
                _log.debug("%s - %s", self.address_string(), format % args)

        server = ThreadingHTTPServer((self.addr, self.port), _RequestHandler)
        server.daemon_threads = True
        self._server = server
        self.port = server.server_address[1]
        self._thread = threading.Thread(target=server.serve_forever, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop serving and close the socket."""
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join()
        self._server = None
        self._thread = None


class DnsmasqMetrics:
    """Counters mirroring dnsmasq's cache statistics."""

    def __init__(self, options: Options, registry: Registry) -> None:
        namespace = options.prometheus_namespace
        self.counters: dict[MetricName, Counter] = {
            metric: Counter(metric_name(namespace, _DNSMASQ_SUBSYSTEM, name), help_text)
            for metric, (name, help_text) in _DNSMASQ_COUNTERS.items()
        }
        for counter in self.counters.values():
            registry.register(counter)

        self.errors = Counter(
            metric_name(namespace, _DNSMASQ_SUBSYSTEM, "errors"),
            "Number of errors that have occurred getting metrics",
        )
        registry.register(self.errors)
        self.cache: dict[MetricName, float] = {}

    def export(self, metrics: Mapping[MetricName, int]) -> None:
        """Bring the counters up to the absolute values dnsmasq reported.

        Counters can only be increased, so the difference from the last
        exported value is added.
        """
        for key, value in metrics.items():
            previous = self.cache.get(key, 0.0)
            delta = float(value) - previous
            self.cache[key] = previous + delta
            self.counters[key].add(delta)


def initialize_metrics(
    options: Options, registry: Registry, http_server: HttpServer
) -> DnsmasqMetrics:
    """Define the dnsmasq counters and start serving metrics and /healthz."""
    dnsmasq_metrics = DnsmasqMetrics(options, registry)

    def serve_metrics() -> tuple[int, str, bytes]:
        return HTTPStatus.OK, _EXPOSITION_TYPE, registry.render().encode()

    def serve_healthz() -> tuple[int, str, bytes]:
        body = f"ok ({datetime.datetime.now()})\n"
        return HTTPStatus.OK, "text/plain; charset=utf-8", body.encode()

    http_server.add_route(options.prometheus_path, serve_metrics)
    http_server.add_route("/healthz", serve_healthz)
    http_server.start()
    return dnsmasq_metrics