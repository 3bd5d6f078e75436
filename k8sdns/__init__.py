"""Tools for supervising dnsmasq, exporting its metrics and probing cluster DNS."""

__version__ = "0.1.0"