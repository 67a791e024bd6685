"""Identity trial loop: decrypt the wrapped key with each identity and load it."""

from __future__ import annotations

import contextlib
import os
import tempfile
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List

from . import age, keystatus, zfs
from .errors import DecryptError, IdentitiesExhausted, LoadKeyError
from .executil import info, trace, warn
from .model import Deadline, KeyStatus, PoolSpec
from .paths import key_dir


@dataclass
class TrialResult:
    identity: str
    attempts: int
    tried: List[dict] = field(default_factory=list)


@contextlib.contextmanager
def temporary_key_material(pool_name: str, directory: str | None = None) -> Iterator[tuple]:
    """Yield ``(file, path)`` for a 0600 file that is removed on every exit path."""

    fd, path = tempfile.mkstemp(prefix=f"zfs-key-{pool_name}-", dir=directory or key_dir())
    fh = os.fdopen(fd, "wb")
    try:
        yield fh, path
    finally:
        fh.close()
        with contextlib.suppress(FileNotFoundError):
            os.unlink(path)
        trace("identity.key_material_removed", pool=pool_name, path=path)


def try_identity(pool: PoolSpec, identity: str, deadline: Deadline) -> None:
    """Decrypt and load the pool key with one identity.

    Raises ``DecryptError`` or ``LoadKeyError``; the decrypted key never
    outlives this call.
    """

    with temporary_key_material(pool.name) as (fh, path):
        trace("identity.decrypt", pool=pool.name, identity=identity, key_file=pool.encrypted_key_file)
        res = age.decrypt(identity, pool.encrypted_key_file, fh, timeout=deadline.remaining())
        if res.rc != 0:
            raise DecryptError(
                f"age decrypt failed: rc={res.rc} {(res.err or '').strip()}".rstrip(),
                pool=pool.name,
            )
        os.fsync(fh.fileno())

        trace("identity.load_key", pool=pool.name, identity=identity, path=path)
        res = zfs.load_key(pool.name, path, timeout=deadline.remaining())
        if res.rc != 0:
            raise LoadKeyError(
                f"zfs load-key failed: rc={res.rc} {(res.err or '').strip()}".rstrip(),
                pool=pool.name,
            )


def try_unlock(pool: PoolSpec, identities: Iterable[str], deadline: Deadline) -> TrialResult:
    """Try identities in order until the pool reports ``keystatus=available``."""

    attempts = 0
    tried: List[dict] = []
    for identity in identities:
        if not identity:
            continue
        if not os.path.exists(identity):
            trace("identity.missing", pool=pool.name, identity=identity)
            continue

        attempts += 1
        info("identity.try", pool=pool.name, identity=identity, attempt=attempts)
        try:
            try_identity(pool, identity, deadline)
        except (DecryptError, LoadKeyError) as exc:
            warn("identity.failed", pool=pool.name, identity=identity, reason=exc.reason, error=str(exc))
            tried.append({"identity": identity, "result": exc.reason})
            continue

        status = keystatus.probe(pool, deadline)
        if status is KeyStatus.AVAILABLE:
            info("identity.unlocked", pool=pool.name, identity=identity, attempt=attempts)
            tried.append({"identity": identity, "result": "unlocked"})
            return TrialResult(identity=identity, attempts=attempts, tried=tried)

        # load-key reported success but the pool still has no key
        warn("identity.unconfirmed", pool=pool.name, identity=identity, keystatus=status.value)
        tried.append({"identity": identity, "result": "unconfirmed"})

    raise IdentitiesExhausted(
        f"no identity could unlock pool {pool.name} ({attempts} tried)",
        pool=pool.name,
        attempts=attempts,
        tried=tried,
    )
