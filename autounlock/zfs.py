"""zpool/zfs command wrappers used during unlock."""

from __future__ import annotations

from .executil import Result, run

MOUNT_ALL_TIMEOUT = 60.0


def list_pools(timeout: float | None = 60.0) -> Result:
    return run(["zpool", "list", "-H", "-o", "name"], check=False, timeout=timeout)


def pool_names(res: Result) -> list[str]:
    names = []
    for line in (res.out or "").splitlines():
        name = line.strip()
        if name:
            names.append(name)
    return names


def import_pool(pool: str, timeout: float | None = 60.0) -> Result:
    # -N keeps datasets unmounted until keys are loaded
    return run(["zpool", "import", "-N", pool], check=False, timeout=timeout)


def mount_dataset(dataset: str, timeout: float | None = 60.0) -> Result:
    return run(["zfs", "mount", dataset], check=False, timeout=timeout)


def mount_all(timeout: float | None = MOUNT_ALL_TIMEOUT) -> Result:
    return run(["zfs", "mount", "-a"], check=False, timeout=timeout)


def get_keystatus(pool: str, timeout: float | None = 60.0) -> Result:
    return run(["zfs", "get", "-H", "-o", "value", "keystatus", pool], check=False, timeout=timeout)


def load_key(pool: str, key_path: str, timeout: float | None = 60.0) -> Result:
    return run(["zfs", "load-key", "-L", f"file://{key_path}", pool], check=False, timeout=timeout)
