"""Drives a dnsmasq nanny through its configuration directory."""

from __future__ import annotations

import os
import time

GLOBAL_TIMEOUT = 10.0


class Harness:
    """Writes nanny configuration and watches the arguments mock dnsmasq records."""

    poll_interval = 1.0

    def __init__(self, tmp_dir: str, nanny_exec: str, mock_dnsmasq: str) -> None:
        self.tmp_dir = tmp_dir
        self.nanny_exec = nanny_exec
        self.mock_dnsmasq = mock_dnsmasq

    @property
    def config_dir(self) -> str:
        return self.tmp_dir + "/config"

    @property
    def args_file(self) -> str:
        return self.tmp_dir + "/args.txt"

    def setup(self) -> None:
        """Create the configuration directory; it must not exist yet."""
        os.mkdir(self.config_dir, 0o755)

    def configure(self, stub_domains: str, upstream_nameservers: str) -> None:
        """Write each configuration key, or remove its file if the value is empty."""
        for key, value in (
            ("stubDomains", stub_domains),
            ("upstreamNameservers", upstream_nameservers),
        ):
            filename = f"{self.config_dir}/{key}"
            if value:
                with open(filename, "w", encoding="utf-8") as handle:
                    handle.write(value)
            else:
                try:
                    os.remove(filename)
                except FileNotFoundError:
                    pass

    def read_output(self) -> list[str]:
        """Return the non-empty lines mock dnsmasq wrote, or [] if none yet."""
        try:
            with open(self.args_file, encoding="utf-8") as handle:
                text = handle.read()
        except OSError:
            return []
        return [line for line in text.split("\n") if line]

    def wait_for_args(self, line: str, timeout: float = GLOBAL_TIMEOUT) -> None:
        """Wait until the last line written is line; raise TimeoutError otherwise."""
        deadline = time.monotonic() + timeout
        while time.monotonic() <= deadline:
            lines = self.read_output()
            if lines and lines[-1] == line:
                return
            time.sleep(self.poll_interval)
        raise TimeoutError(f"timeout waiting for line '{line}'")