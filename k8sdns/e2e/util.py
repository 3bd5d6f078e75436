"""sudo and mount helpers for the end-to-end environment."""

from __future__ import annotations

import subprocess
import threading
from typing import Sequence

from k8sdns.e2e.logger import FatalError, get_logger

SUDO_REFRESH_INTERVAL = 10.0


def _run(command: Sequence[str]) -> str | None:
    """Run a command; return None on success or a description of the failure."""
    try:
        result = subprocess.run(
            list(command),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
    except OSError as exc:
        return str(exc)
    if result.returncode != 0:
        return f"exit status {result.returncode}"
    return None


def can_sudo() -> bool:
    """Return True if sudo can be used without a password."""
    return _run(["sudo", "-nv"]) is None


def keep_sudo_active() -> threading.Event:
    """Refresh the sudo timestamp in the background until the returned event is set."""
    stop = threading.Event()

    def refresh() -> None:
        while not stop.is_set():
            error = _run(["sudo", "-nv"])
            if error is not None:
                try:
                    get_logger().fatal(f"Unable to keep sudo active: {error}")
                except FatalError:
                    return
            stop.wait(SUDO_REFRESH_INTERVAL)

    threading.Thread(target=refresh, daemon=True).start()
    return stop


def make_shared_mount(path: str) -> None:
    """Bind-mount path onto itself and make it recursively shared."""
    error = _run(["sudo", "mount", "--bind", path, path])
    if error is not None:
        get_logger().fatal(f"Error bind mounting {path}: {error}")
    error = _run(["sudo", "mount", "--make-rshared", path])
    if error is not None:
        get_logger().fatal(f"Error mount --make-rshared {path}: {error}")


def umount(path: str) -> None:
    """Unmount path."""
    error = _run(["sudo", "umount", path])
    if error is not None:
        get_logger().fatal(f"Error umount {path}: {error}")