"""Per-pool unlock sequence under a single deadline."""

from __future__ import annotations

import os
import subprocess
import time
from typing import Sequence

from . import identities, keystatus, readiness
from .errors import IdentitiesExhausted, KeyFileMissing, UnlockError, UnlockTimeout
from .executil import error, info, trace
from .model import FAILED, SKIPPED, UNLOCKED, Deadline, KeyStatus, PoolOutcome, PoolSpec


def _failed(pool: PoolSpec, exc: UnlockError, **extra) -> PoolOutcome:
    error("pool.failed", pool=pool.name, reason=exc.reason, error=str(exc))
    return PoolOutcome(pool=pool.name, state=FAILED, reason=exc.reason, detail=str(exc), **extra)


def _timeout_error(pool: PoolSpec, deadline: Deadline, exc: subprocess.TimeoutExpired) -> UnlockTimeout:
    cmd = exc.cmd if isinstance(exc.cmd, str) else " ".join(str(part) for part in exc.cmd)
    if deadline.cancelled:
        return UnlockTimeout(f"unlock cancelled during {cmd}", pool=pool.name)
    return UnlockTimeout(f"deadline of {deadline.budget:g}s elapsed during {cmd}", pool=pool.name)


def _sequence(pool: PoolSpec, identity_files: Sequence[str], deadline: Deadline) -> PoolOutcome:
    readiness.ensure_imported(pool, deadline)
    readiness.ensure_keystore_mounted(pool, deadline)

    status = keystatus.probe(pool, deadline)
    trace("pool.status", pool=pool.name, keystatus=status.value)
    if status is KeyStatus.AVAILABLE:
        info("pool.already_unlocked", pool=pool.name)
        return PoolOutcome(pool=pool.name, state=SKIPPED, reason="already_unlocked")

    if not os.path.isfile(pool.encrypted_key_file):
        raise KeyFileMissing(f"encrypted key file {pool.encrypted_key_file} not found", pool=pool.name)

    result = identities.try_unlock(pool, identity_files, deadline)
    return PoolOutcome(
        pool=pool.name,
        state=UNLOCKED,
        identity=result.identity,
        attempts=result.attempts,
        tried=result.tried,
    )


def unlock_pool(pool: PoolSpec, identity_files: Sequence[str], deadline: Deadline) -> PoolOutcome:
    """Run the full unlock sequence for one pool.

    Never raises: every failure becomes a ``failed`` outcome so the caller
    can carry on with the remaining pools.
    """

    started = time.monotonic()
    info("pool.start", pool=pool.name, timeout=deadline.budget)
    try:
        outcome = _sequence(pool, identity_files, deadline)
    except subprocess.TimeoutExpired as exc:
        outcome = _failed(pool, _timeout_error(pool, deadline, exc))
    except IdentitiesExhausted as exc:
        outcome = _failed(pool, exc, attempts=exc.attempts, tried=exc.tried)
    except UnlockError as exc:
        outcome = _failed(pool, exc)
    except Exception as exc:  # noqa: BLE001
        error("pool.unhandled", pool=pool.name, error=repr(exc))
        outcome = PoolOutcome(pool=pool.name, state=FAILED, reason="unhandled", detail=str(exc))
    outcome.duration = time.monotonic() - started
    if not outcome.failed:
        info("pool.done", pool=pool.name, state=outcome.state, attempts=outcome.attempts)
    return outcome
