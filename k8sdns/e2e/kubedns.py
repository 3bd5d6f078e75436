"""Runs a kube-dns binary in the background and queries it."""

from __future__ import annotations

import signal
import socket
import threading
import time
from typing import Callable, TypeVar

import dns.message
import dns.query
import dns.rdataclass
import dns.rdatatype

from k8sdns.e2e.framework import Framework, get_framework
from k8sdns.e2e.logger import get_logger

T = TypeVar("T")


def wait_until(check: Callable[[], T], timeout: float = 1.0, interval: float = 0.01) -> T:
    """Call check until it returns without raising and return its result.

    After timeout seconds the last exception check raised is raised again.
    """
    deadline = time.monotonic() + timeout
    while True:
        try:
            return check()
        except Exception:
            if time.monotonic() >= deadline:
                raise
        time.sleep(interval)


class KubeDNS:
    """A kube-dns daemon started from the repository's build output."""

    host = "127.0.0.1"
    dns_port = 10053
    health_port = 8081
    startup_timeout = 10.0
    query_timeout = 2.0

    def __init__(self, framework: Framework | None = None) -> None:
        self._framework = framework
        self.name = ""
        self.is_running = False
        self._process = None

    @property
    def framework(self) -> Framework:
        return self._framework if self._framework is not None else get_framework()

    def start(self, name: str, *args: str) -> None:
        """Start kube-dns under a process name and wait until it listens."""
        log = get_logger()
        self.name = name
        fr = self.framework
        binary = fr.path("bin/amd64/kube-dns")
        arguments = [
            *args,
            "--logtostderr",
            "--dns-port",
            str(self.dns_port),
            "--kubecfg-file",
            fr.path("test/e2e/cluster/config"),
        ]
        try:
            process = fr.run_in_background(name, binary, *arguments)
        except OSError as exc:
            log.fatal(str(exc))
        self._process = process
        self.is_running = True

        def watch() -> None:
            process.wait()
            self.is_running = False

        threading.Thread(target=watch, daemon=True).start()

        for port in (self.dns_port, self.health_port):
            wait_until(lambda port=port: self._connect(port), self.startup_timeout)
        log.log("kube-dns started")

    def _connect(self, port: int) -> None:
        with socket.create_connection((self.host, port), timeout=1.0):
            pass

    def stop(self) -> None:
        """Interrupt kube-dns so it flushes its logs, then kill it."""
        log = get_logger()
        log.log("Stopping kube-dns")
        if not self.is_running or self._process is None:
            log.fatal("kube-dns is not running")
        self._process.send_signal(signal.SIGINT)
        time.sleep(0.2)
        self._process.kill()

    def query(self, name: str, qtype: int) -> list[str]:
        """Query kube-dns and return each answer record as text."""
        message = dns.message.make_query(name, qtype, dns.rdataclass.IN, flags=0)
        response = dns.query.udp(
            message, self.host, timeout=self.query_timeout, port=self.dns_port
        )
        return [
            "\t".join(
                (
                    rrset.name.to_text(),
                    str(rrset.ttl),
                    dns.rdataclass.to_text(rrset.rdclass),
                    dns.rdatatype.to_text(rrset.rdtype),
                    rdata.to_text(),
                )
            )
            for rrset in response.answer
            for rdata in rrset
        ]