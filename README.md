# k8sdns

Building blocks for running and watching a caching DNS forwarder inside a
cluster:

- **`k8sdns.dnsmasq.metrics`**: read dnsmasq's cache counters over `*.bind`
  CHAOS TXT queries (`MetricsClient`).
- **`k8sdns.dnsmasq.nanny`**: supervise a dnsmasq process (`Nanny`) and turn
  stub domain and upstream nameserver settings (`DnsmasqConfig`) into dnsmasq
  `--server` arguments.
- **`k8sdns.sidecar`**: a monitoring loop (`Server`) that polls dnsmasq and
  exports its cache counters in Prometheus text format, plus periodic DNS
  probes (`DNSProbe`) that each serve a JSON health check.
- **`k8sdns.e2e`**: helpers for end-to-end tests: a Docker shim, a throw-away
  etcd / API server / kubelet cluster, a framework that runs processes in the
  background with their output kept in log files, a kube-dns driver and a
  harness for a dnsmasq nanny.
- **`k8sdns.util`** and **`k8sdns.version`**: prefixed multi-line logging and a
  `--version` flag that accepts `true`, `false` or `raw`.

The package needs Python 3.10 or later and depends on `dnspython`.

## Reading dnsmasq cache metrics

dnsmasq 2.76 and later answers TXT queries in the CHAOS class for
`hits.bind.`, `misses.bind.`, `evictions.bind.`, `insertions.bind.` and
`cachesize.bind.`.

```python
from k8sdns.dnsmasq.metrics import MetricsClient, MetricsError

client = MetricsClient("127.0.0.1", 53, 2.0)
try:
    metrics = client.get_metrics()
except MetricsError as exc:
    print("dnsmasq did not answer:", exc)
else:
    for name, value in metrics.items():
        print(name.value, value)
```

`get_metrics()` returns a dict keyed by `MetricName` (`CACHE_HITS`,
`CACHE_MISSES`, `CACHE_EVICTIONS`, `CACHE_INSERTIONS`, `CACHE_SIZE`). Each
metric must come back as exactly one TXT record holding one decimal integer
that fits in 64 bits; a network failure or any other answer raises
`MetricsError`.

## Supervising dnsmasq

```python
from k8sdns.dnsmasq.nanny import DnsmasqConfig, Nanny, extract_dnsmasq_args, munge_server

own_args, dnsmasq_args = extract_dnsmasq_args(["-v=2", "--", "--keep-in-foreground"])
# own_args == ["-v=2"], dnsmasq_args == ["--keep-in-foreground"]
```

`extract_dnsmasq_args` splits a command line at the first `--`, dropping the
separator. Without `--`, every argument lands in the first list.

dnsmasq separates a server's port with `#` rather than `:`;
`munge_server` rewrites addresses accordingly:

| input                 | output                |
|-----------------------|-----------------------|
| `2.2.2.2:10053`       | `2.2.2.2#10053`       |
| `3.3.3.3`             | `3.3.3.3`             |
| `2001:db8:1::1`       | `2001:db8:1::1`       |
| `[2001:db8:2::2]`     | `[2001:db8:2::2]`     |
| `[2001:db8:3::3]:53`  | `[2001:db8:3::3]#53`  |

A `Nanny` is configured from a `DnsmasqConfig` and then started:

```python
nanny = Nanny("dnsmasq")
nanny.configure(
    dnsmasq_args,
    DnsmasqConfig(upstream_nameservers=["2.2.2.2:10053"]),
    "127.0.0.1:10053",
)
nanny.start()
status = nanny.wait()
```

- `configure(args, config, kubedns_server)` builds `nanny.args`. Each stub
  domain server becomes `--server /domain/address`; servers that are not IP
  addresses are looked up first: names ending in `cluster.local` through the
  DNS server at `kubedns_server`, other names through the system resolver. If
  a lookup fails the name is kept and the error logged. Each upstream
  nameserver becomes `--server address`, and if there are any, `--no-resolv`
  is appended so dnsmasq ignores `/etc/resolv.conf`.
- `start()` launches the process and logs its stdout and stderr lines;
  `NannyError` is raised if the executable cannot be started.
- `wait(timeout)` returns the exit status, or raises
  `subprocess.TimeoutExpired` if the process is still running.
- `kill()` stops the process. Calling `wait` or `kill` on a nanny that is not
  running raises `NannyError`.

## The monitoring sidecar

`k8sdns.sidecar.options.Options` carries the defaults: dnsmasq at
`127.0.0.1:53` polled every 5000 ms, and Prometheus metrics served on
`0.0.0.0:10054` under `/metrics` in the `kubedns` namespace. Add
`DNSProbeOption(label, server, name, interval, qtype)` entries to
`Options.probes` to have the sidecar resolve a name over and over (`server` is
`"host:port"`, `interval` in seconds).

```python
from k8sdns.sidecar.options import Options
from k8sdns.sidecar.server import Server

Server().run(Options())   # loops until the process is stopped
```

What is served:

- `/metrics`: all registered metrics in the Prometheus text format. dnsmasq's
  cache counters are `kubedns_dnsmasq_hits`, `kubedns_dnsmasq_misses`,
  `kubedns_dnsmasq_evictions`, `kubedns_dnsmasq_insertions` and
  `kubedns_dnsmasq_max_size`; `kubedns_dnsmasq_errors` counts failed polls.
  Each probe adds `kubedns_probe_<label>_latency_ms` (a histogram) and
  `kubedns_probe_<label>_errors`.
- `/healthz`: `ok (<current time>)`.
- `/healthcheck/<label>`: for each probe, a JSON body with `IsOk`,
  `LatencySeconds` and `Err`; status 200 when the last lookup returned
  answers, 503 otherwise (also before the first probe has run).

The pieces can be used on their own: `Counter`, `Histogram`, `Registry`,
`HttpServer`, `exponential_buckets` and `metric_name` live in
`k8sdns.sidecar.metrics`, and `Server.poll_once()` performs a single poll.

## Version flag

```python
import argparse
from k8sdns.version import add_version_flag, print_and_exit_if_requested

parser = argparse.ArgumentParser()
add_version_flag(parser)
args = parser.parse_args()
print_and_exit_if_requested(args.version)
```

A bare `--version` means `--version=true` and prints `Kube-DNS <VERSION>`;
`--version=raw` prints the version as a quoted string. Both exit with status 0.

## End-to-end helpers

`k8sdns.e2e` drives real processes and containers and needs Docker and
password-less `sudo` on the host.

- `init_framework(base_dir, work_dir)` builds the shared `Framework` and
  `get_framework()` returns it; `Framework.set_up()` and
  `Framework.tear_down()` bring the test `Cluster` up and down. If
  `framework.failed` is set, tear-down copies the logs of every process started
  with `Framework.run_in_background` to stderr.
- `KubeDNS` starts `bin/amd64/kube-dns` under the base directory, waits for
  its DNS and health ports, and answers `query(name, qtype)` with the answer
  records as tab-separated text.
- `Harness` writes `stubDomains` and `upstreamNameservers` files into a
  configuration directory and waits for a line in the `args.txt` file a mock
  dnsmasq writes.
- Errors are reported through the logger from `get_logger()`; the default
  `StandardLogger` raises `FatalError`. Use `set_logger` to install another
  `Logger`.

## What the package does not do

- It installs no command-line programs. The sidecar is started by calling
  `Server.run` from your own code.
- It does not read a `DnsmasqConfig` from files or watch for configuration
  changes; the caller builds the configuration and restarts the `Nanny` when
  it changes.