"""Pool import and keystore mount checks run before any key is loaded."""

from __future__ import annotations

import os

from . import zfs
from .errors import KeystoreMountError, PoolImportError
from .executil import info, trace, warn
from .model import Deadline, PoolSpec


def _imported(pool: PoolSpec, deadline: Deadline) -> bool:
    res = zfs.list_pools(timeout=deadline.remaining())
    if res.rc != 0:
        raise PoolImportError(
            f"zpool list failed: rc={res.rc} {(res.err or '').strip()}".rstrip(),
            pool=pool.name,
        )
    return pool.name in zfs.pool_names(res)


def ensure_imported(pool: PoolSpec, deadline: Deadline) -> bool:
    """Import ``pool`` without mounting its datasets unless it is already imported.

    Returns ``True`` when an import was performed.  The pool list is read
    again after the import; the import's own exit status is only logged.
    """

    if _imported(pool, deadline):
        trace("readiness.already_imported", pool=pool.name)
        return False

    info("readiness.import", pool=pool.name)
    res = zfs.import_pool(pool.name, timeout=deadline.remaining())
    if res.rc != 0:
        warn("readiness.import_rc", pool=pool.name, rc=res.rc, err=(res.err or "").strip())
    if not _imported(pool, deadline):
        detail = (res.err or "").strip() or f"rc={res.rc}"
        raise PoolImportError(f"zpool import -N {pool.name} failed: {detail}", pool=pool.name)
    return True


def ensure_keystore_mounted(pool: PoolSpec, deadline: Deadline) -> str:
    """Mount ``<pool>/keystore`` and return the directory holding the key file.

    A failing ``zfs mount`` is expected when the dataset is already mounted,
    so only the missing directory afterwards is treated as an error.
    """

    dataset = pool.keystore_dataset
    trace("readiness.mount_keystore", pool=pool.name, dataset=dataset)
    res = zfs.mount_dataset(dataset, timeout=deadline.remaining())
    if res.rc != 0:
        warn(
            "readiness.mount_rc",
            pool=pool.name,
            dataset=dataset,
            rc=res.rc,
            err=(res.err or "").strip(),
        )
    directory = pool.keystore_dir
    if not os.path.isdir(directory):
        raise KeystoreMountError(
            f"keystore mountpoint {directory} does not exist after zfs mount {dataset}",
            pool=pool.name,
        )
    return directory
