"""Drive the unlock sequence across every configured pool."""

from __future__ import annotations

import subprocess
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from . import zfs
from .executil import info, warn
from .model import SKIPPED, Deadline, Flags, PoolOutcome, PoolSpec, UnlockConfig
from .orchestrator import unlock_pool

MOUNT_ALL_OK = "ok"
MOUNT_ALL_FAILED = "failed"
MOUNT_ALL_SKIPPED = "skipped"


@dataclass
class FleetReport:
    outcomes: List[PoolOutcome] = field(default_factory=list)
    mount_all: Optional[str] = None

    @property
    def failed(self) -> List[PoolOutcome]:
        return [o for o in self.outcomes if o.failed]

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def to_dict(self) -> Dict:
        return {
            "pools": [o.to_dict() for o in self.outcomes],
            "failed": [o.pool for o in self.failed],
            "mount_all": self.mount_all,
        }


class _DeadlineRegistry:
    """Tracks in-flight deadlines so an interrupt can cancel them all."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: list[Deadline] = []
        self._cancelled = False

    def open(self, seconds: float) -> Deadline:
        deadline = Deadline(seconds)
        with self._lock:
            if self._cancelled:
                deadline.cancel()
            self._active.append(deadline)
        return deadline

    def close(self, deadline: Deadline) -> None:
        with self._lock:
            if deadline in self._active:
                self._active.remove(deadline)

    def cancel_all(self) -> None:
        with self._lock:
            self._cancelled = True
            for deadline in self._active:
                deadline.cancel()


def mount_everything() -> str:
    """Best-effort ``zfs mount -a``; failures only warn."""

    try:
        res = zfs.mount_all()
    except subprocess.TimeoutExpired:
        warn("fleet.mount_all_timeout", timeout=zfs.MOUNT_ALL_TIMEOUT)
        return MOUNT_ALL_FAILED
    if res.rc != 0:
        warn("fleet.mount_all_failed", rc=res.rc, err=(res.err or "").strip())
        return MOUNT_ALL_FAILED
    info("fleet.mount_all_ok")
    return MOUNT_ALL_OK


def run_fleet(
    config: UnlockConfig,
    flags: Flags,
    unlock: Callable[[PoolSpec, tuple, Deadline], PoolOutcome] = unlock_pool,
) -> FleetReport:
    report = FleetReport()
    registry = _DeadlineRegistry()
    slots: List[Optional[PoolOutcome]] = []
    work: List[tuple[int, PoolSpec]] = []

    for pool in config.pools:
        if not pool.complete:
            warn("fleet.incomplete_pool", pool=pool.name or None, key_file=pool.encrypted_key_file or None)
            slots.append(PoolOutcome(pool=pool.name or "<unnamed>", state=SKIPPED, reason="incomplete_config"))
            continue
        work.append((len(slots), pool))
        slots.append(None)

    def _one(pool: PoolSpec) -> PoolOutcome:
        deadline = registry.open(flags.timeout)
        try:
            return unlock(pool, config.identity_files, deadline)
        finally:
            registry.close(deadline)

    if flags.jobs > 1 and len(work) > 1:
        with ThreadPoolExecutor(max_workers=flags.jobs, thread_name_prefix="unlock") as executor:
            futures = [(idx, executor.submit(_one, pool)) for idx, pool in work]
            try:
                for idx, future in futures:
                    slots[idx] = future.result()
            except KeyboardInterrupt:
                registry.cancel_all()
                executor.shutdown(wait=True, cancel_futures=True)
                raise
    else:
        # an interrupt here kills the running child via subprocess.run
        for idx, pool in work:
            slots[idx] = _one(pool)

    report.outcomes = [outcome for outcome in slots if outcome is not None]
    if report.failed:
        warn("fleet.pools_failed", pools=[o.pool for o in report.failed])
        report.mount_all = MOUNT_ALL_SKIPPED
    elif not flags.mount_all:
        report.mount_all = MOUNT_ALL_SKIPPED
    else:
        report.mount_all = mount_everything()
    return report
