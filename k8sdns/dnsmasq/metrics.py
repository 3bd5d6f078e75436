"""Client for the cache statistics dnsmasq publishes as CHAOS TXT records.

dnsmasq 2.76 and later answer ``<metric>.bind.`` queries of class CHAOS
with a single TXT string holding the counter value.
"""

from __future__ import annotations

import enum
import logging
import re

import dns.exception
import dns.message
import dns.query
import dns.rdataclass
import dns.rdatatype

_log = logging.getLogger(__name__)

_INTEGER = re.compile(rb"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class MetricName(str, enum.Enum):
    """Cache metrics exported by dnsmasq, in the order they are queried."""

    CACHE_HITS = "hits"
    CACHE_MISSES = "misses"
    CACHE_EVICTIONS = "evictions"
    CACHE_INSERTIONS = "insertions"
    CACHE_SIZE = "cachesize"


ALL_METRICS: tuple[MetricName, ...] = tuple(MetricName)


class MetricsError(Exception):
    """Raised when dnsmasq cannot be queried or gives an unusable answer."""


class MetricsClient:
    """Reads the raw cache metrics of a dnsmasq instance over UDP."""

    def __init__(self, addr: str, port: int, timeout: float = 2.0) -> None:
        self.addr = addr
        self.port = port
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"MetricsClient({self.addr!r}, {self.port!r})"

    def get_metrics(self) -> dict[MetricName, int]:
        """Query every metric and return the values keyed by metric name."""
        return {
            metric: self._get_single_metric(f"{metric.value}.bind.")
            for metric in ALL_METRICS
        }

    def _get_single_metric(self, name: str) -> int:
        query = dns.message.make_query(name, dns.rdatatype.TXT, dns.rdataclass.CH)
        try:
            response = dns.query.udp(
                query, self.addr, timeout=self.timeout, port=self.port
            )
        except (dns.exception.DNSException, OSError) as exc:
            raise MetricsError(f"error querying {name}: {exc}") from exc

        records = [rdata for rrset in response.answer for rdata in rrset]
        if len(records) != 1:
            raise MetricsError(
                f"invalid number of Answer records for {name}: {len(records)}"
            )

        record = records[0]
        if record.rdtype != dns.rdatatype.TXT:
            raise MetricsError(f"missing TXT record for {name}")

        _log.debug("Got valid TXT response %s for %s", record, name)
        if len(record.strings) != 1:
            raise MetricsError(
                f"invalid number of TXT records for {name}: {len(record.strings)}"
            )

        raw = record.strings[0]
        if not _INTEGER.fullmatch(raw):
            raise MetricsError(f"invalid value for {name}: {raw!r}")
        value = int(raw)
        if not _INT64_MIN <= value <= _INT64_MAX:
            raise MetricsError(f"value out of range for {name}: {raw!r}")
        return value