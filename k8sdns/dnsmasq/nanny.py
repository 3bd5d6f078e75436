"""Runs a dnsmasq process and builds its command line from configuration."""

from __future__ import annotations

import ipaddress
import logging
import socket
import subprocess
import threading
from dataclasses import dataclass, field
from typing import IO, Sequence

import dns.exception
import dns.resolver

_log = logging.getLogger(__name__)

_CLUSTER_SUFFIX = "cluster.local"
_RESOLVE_LIFETIME = 5.0


@dataclass
class DnsmasqConfig:
    """Stub domains and upstream nameservers to hand to dnsmasq."""

    stub_domains: dict[str, list[str]] = field(default_factory=dict)
    upstream_nameservers: list[str] = field(default_factory=list)


class NannyError(Exception):
    """Raised when the dnsmasq process cannot be managed as requested."""


def extract_dnsmasq_args(cmdline_args: Sequence[str]) -> tuple[list[str], list[str]]:
    """Split a command line at the first "--".

    Returns the arguments before "--" and the arguments after it; the
    separator itself is dropped. Without "--" everything belongs to the
    first list.
    """
    args = list(cmdline_args)
    try:
        index = args.index("--")
    except ValueError:
        return args, []
    return args[:index], args[index + 1 :]


def munge_server(server: str) -> str:
    """Replace the host/port colon with the '#' separator dnsmasq expects."""
    colon = server.rfind(":")
    if colon == -1:
        return server
    bracket = server.find("]")
    is_v4 = server.count(":") == 1
    is_bracketed_v6 = bracket != -1
    if is_v4 or (is_bracketed_v6 and colon > bracket):
        return server[:colon] + "#" + server[colon + 1 :]
    return server


def _is_ip(text: str) -> bool:
    try:
        ipaddress.ip_address(text)
    except ValueError:
        return False
    return True


def _split_host_port(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep or "]" in port:
        return address.strip("[]"), 53
    return host.strip("[]"), int(port)


def _lookup_via(kubedns_server: str, name: str) -> list[str]:
    host, port = _split_host_port(kubedns_server)
    resolver = dns.resolver.Resolver(configure=False)
    resolver.port = port
    resolver.nameservers = [host]
    resolver.lifetime = _RESOLVE_LIFETIME
    addresses: list[str] = []
    last_error: Exception | None = None
    for rdtype in ("A", "AAAA"):
        try:
            answer = resolver.resolve(name, rdtype)
        except dns.exception.DNSException as exc:
            last_error = exc
            continue
        addresses.extend(rdata.address for rdata in answer)
        if addresses:
            break
    if not addresses and last_error is not None:
        raise last_error
    return addresses


def _lookup_system(name: str) -> list[str]:
    return [info[4][0] for info in socket.getaddrinfo(name, None)]


def _resolve_server(server: str, kubedns_server: str) -> str:
    try:
        if server.endswith(_CLUSTER_SUFFIX):
            addresses = _lookup_via(kubedns_server, server)
        else:
            addresses = _lookup_system(server)
    except (dns.exception.DNSException, OSError, UnicodeError, ValueError) as exc:
        _log.error("Error looking up IP for name %r: %s", server, exc)
        return server
    if not addresses:
        _log.error("Name %r does not resolve to any IPs", server)
        return server
    return addresses[0]


def _log_stream(stream_name: str, stream: IO[bytes]) -> None:
    try:
        for line in stream:
            _log.debug("%s", line.decode(errors="replace").rstrip("\n"))
    except (OSError, ValueError) as exc:
        _log.error("Error reading from %s: %s", stream_name, exc)
        return
    finally:
        stream.close()
    _log.warning("Got EOF from %s", stream_name)


class Nanny:
    """Owns one dnsmasq process and the arguments it is started with."""

    def __init__(self, exec_path: str) -> None:
        self.exec_path = exec_path
        self.args: list[str] = []
        self._process: subprocess.Popen[bytes] | None = None

    def configure(
        self, args: Sequence[str], config: DnsmasqConfig, kubedns_server: str
    ) -> None:
        """Build the dnsmasq arguments. Must be called before start().

        kubedns_server is the address of the local kube-dns instance used
        to resolve stub-domain servers under cluster.local.
        """
        self.args = list(args)

        for domain, servers in config.stub_domains.items():
            for server in servers:
                if not _is_ip(server):
                    server = _resolve_server(server, kubedns_server)
                self.args += ["--server", f"/{domain}/{munge_server(server)}"]

        for server in config.upstream_nameservers:
            self.args += ["--server", munge_server(server)]

        # Explicit upstream nameservers replace /etc/resolv.conf.
        if config.upstream_nameservers:
            self.args.append("--no-resolv")

    def start(self) -> None:
        """Start dnsmasq, forwarding its output to the log."""
        _log.info("Starting dnsmasq %s", self.args)
        try:
            process = subprocess.Popen(
                [self.exec_path, *self.args],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            raise NannyError(f"could not start {self.exec_path}: {exc}") from exc

        for name, stream in (("stderr", process.stderr), ("stdout", process.stdout)):
            threading.Thread(
                target=_log_stream, args=(name, stream), daemon=True
            ).start()
        self._process = process

    def wait(self, timeout: float | None = None) -> int:
        """Wait for dnsmasq to exit and return its exit status.

        Raises subprocess.TimeoutExpired if it is still running after
        timeout seconds.
        """
        if self._process is None:
            raise NannyError("Process is not running")
        return self._process.wait(timeout)

    def kill(self) -> None:
        """Kill the running dnsmasq process."""
        _log.info("Killing dnsmasq")
        if self._process is None:
            raise NannyError("Process is not running")
        try:
            self._process.kill()
        except OSError as exc:
            _log.error("Error killing dnsmasq: %s", exc)
            raise NannyError(f"error killing dnsmasq: {exc}") from exc
        self._process.wait()
        self._process = None