from __future__ import annotations

import os
import tempfile
from pathlib import Path

_DEFAULT_CONFIG = "/etc/zfs-auto-unlock.json"
_DEFAULT_KEY_DIR = "/run"


def _expand(path: str) -> str:
    candidate = Path(path).expanduser()
    try:
        return str(candidate.resolve())
    except FileNotFoundError:
        return str(candidate)


def default_config_path() -> str:
    return _DEFAULT_CONFIG


def log_dirs() -> list[str]:
    """Return candidate log directories in preference order.

    ``AUTOUNLOCK_LOG_DIR`` wins when set.  The remaining entries keep the
    logger working on a read-only ``/var`` early in boot.
    """

    dirs = []
    override = os.environ.get("AUTOUNLOCK_LOG_DIR")
    if override:
        dirs.append(_expand(override))
    dirs.extend(["/var/log/zfs-auto-unlock", "/tmp/zfs-auto-unlock-logs"])
    return dirs


def key_dir() -> str:
    """Directory for decrypted key material.

    ``/run`` is tmpfs on systemd hosts so plaintext keys never reach disk.
    """

    override = os.environ.get("AUTOUNLOCK_KEY_DIR")
    if override:
        return _expand(override)
    if os.path.isdir(_DEFAULT_KEY_DIR):
        return _DEFAULT_KEY_DIR
    return tempfile.gettempdir()
