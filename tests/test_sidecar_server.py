import json
import socket
import threading
import time
import urllib.error
import urllib.request

import dns.message
import dns.rdatatype
import dns.rrset
import pytest

from k8sdns.dnsmasq.metrics import MetricName
from k8sdns.sidecar.options import DNSProbeOption, Options
from k8sdns.sidecar.server import Server

EXPECTED = {
    MetricName.CACHE_HITS: 10,
    MetricName.CACHE_MISSES: 20,
    MetricName.CACHE_EVICTIONS: 30,
    MetricName.CACHE_INSERTIONS: 40,
    MetricName.CACHE_SIZE: 50,
}


class _MockDnsmasq:
    def __init__(self, junk):
        self.junk = junk
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(0.1)
        self.port = self.sock.getsockname()[1]
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self):
        while not self._stopped.is_set():
            try:
                data, remote = self.sock.recvfrom(4096)
            except socket.timeout:
                continue
            except OSError:
                return
            if self.junk:
                self.sock.sendto(b"junk", remote)
                continue
            query = dns.message.from_wire(data)
            response = dns.message.make_response(query)
            name = str(query.question[0].name)
            values = {metric.value: value for metric, value in EXPECTED.items()}
            key = name.split(".")[0]
            if key in values:
                response.answer.append(
                    dns.rrset.from_text(name, 100, "CH", "TXT", f'"{values[key]}"')
                )
            self.sock.sendto(response.to_wire(), remote)

    def close(self):
        self._stopped.set()
        self._thread.join()
        self.sock.close()


@pytest.fixture
def dnsmasq_ok():
    server = _MockDnsmasq(junk=False)
    yield server
    server.close()


@pytest.fixture
def dnsmasq_junk():
    server = _MockDnsmasq(junk=True)
    yield server
    server.close()


def _wait_for(check, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if check():
            return True
        time.sleep(0.02)
    return False


def _start(options):
    server = Server()
    threading.Thread(target=server.run, args=(options,), daemon=True).start()
    assert _wait_for(lambda: server.metrics_client is not None)
    return server


def _options(port, probes=()):
    return Options(
        dnsmasq_port=port,
        dnsmasq_poll_interval_ms=50,
        prometheus_addr="127.0.0.1",
        prometheus_port=0,
        probes=list(probes),
    )


def test_poll_once_before_run_fails():
    with pytest.raises(RuntimeError):
        Server().poll_once()


def test_run_exports_dnsmasq_metrics(dnsmasq_ok):
    server = _start(_options(dnsmasq_ok.port))
    try:
        expected_cache = {metric: float(value) for metric, value in EXPECTED.items()}
        assert _wait_for(lambda: server.dnsmasq_metrics.cache == expected_cache)
        assert server.poll_once() == EXPECTED
        url = f"http://127.0.0.1:{server.http_server.port}/metrics"
        with urllib.request.urlopen(url, timeout=5) as response:
            body = response.read().decode()
        assert "kubedns_dnsmasq_hits 10\n" in body
    finally:
        server.http_server.stop()


def test_run_counts_errors(dnsmasq_junk):
    server = _start(_options(dnsmasq_junk.port))
    try:
        assert _wait_for(lambda: server.dnsmasq_metrics.errors.value >= 1)
        assert server.dnsmasq_metrics.cache == {}
        assert server.poll_once() is None
    finally:
        server.http_server.stop()


def test_run_starts_probes(dnsmasq_ok):
    probe = DNSProbeOption(
        label="local",
        server=f"127.0.0.1:{dnsmasq_ok.port}",
        name="test.local.",
        interval=0.05,
        qtype=dns.rdatatype.A,
    )
    server = _start(_options(dnsmasq_ok.port, [probe]))
    try:
        assert len(server.probes) == 1
        url = f"http://127.0.0.1:{server.http_server.port}/healthcheck/local"
        try:
            with urllib.request.urlopen(url, timeout=5) as response:
                status, body = response.status, json.loads(response.read())
        except urllib.error.HTTPError as exc:
            status, body = exc.code, json.loads(exc.read())
        assert status in (200, 503)
        assert set(body) == {"IsOk", "LatencySeconds", "Err"}
    finally:
        server.http_server.stop()