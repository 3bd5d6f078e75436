"""Monitoring sidecar: dnsmasq metrics export and DNS health probes."""