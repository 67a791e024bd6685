from __future__ import annotations

from . import zfs
from .errors import ProbeError
from .executil import trace, warn
from .model import Deadline, KeyStatus, PoolSpec

_KNOWN = {status.value: status for status in (KeyStatus.AVAILABLE, KeyStatus.UNAVAILABLE)}


def query(pool: PoolSpec, deadline: Deadline) -> KeyStatus:
    """Read the ``keystatus`` property of the pool's root dataset.

    Raises ``ProbeError`` when the value cannot be determined.
    """

    res = zfs.get_keystatus(pool.name, timeout=deadline.remaining())
    if res.rc != 0:
        raise ProbeError(
            f"zfs get keystatus {pool.name} failed: rc={res.rc} {(res.err or '').strip()}".rstrip(),
            pool=pool.name,
        )
    value = (res.out or "").strip()
    status = _KNOWN.get(value)
    if status is None:
        raise ProbeError(f"unexpected keystatus {value!r} for {pool.name}", pool=pool.name, value=value)
    return status


def probe(pool: PoolSpec, deadline: Deadline) -> KeyStatus:
    """Like :func:`query` but maps probe failures to ``KeyStatus.UNKNOWN``."""

    try:
        status = query(pool, deadline)
    except ProbeError as exc:
        if exc.value is not None:
            warn("keystatus.unknown", pool=pool.name, value=exc.value)
        else:
            warn("keystatus.probe_failed", pool=pool.name, error=str(exc))
        return KeyStatus.UNKNOWN
    trace("keystatus.value", pool=pool.name, keystatus=status.value)
    return status
