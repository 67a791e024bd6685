from __future__ import annotations

import enum
import os
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

KEYSTORE_CHILD = "keystore"

UNLOCKED = "unlocked"
SKIPPED = "skipped"
FAILED = "failed"


class KeyStatus(enum.Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class PoolSpec:
    name: str
    encrypted_key_file: str

    @property
    def complete(self) -> bool:
        return bool(self.name) and bool(self.encrypted_key_file)

    @property
    def keystore_dataset(self) -> str:
        return f"{self.name}/{KEYSTORE_CHILD}"

    @property
    def keystore_dir(self) -> str:
        return os.path.dirname(self.encrypted_key_file) or "."


@dataclass(frozen=True)
class UnlockConfig:
    identity_files: tuple[str, ...]
    pools: tuple[PoolSpec, ...]
    source: Optional[str] = None


@dataclass
class Flags:
    timeout: float = 60.0
    jobs: int = 1
    plan: bool = False
    mount_all: bool = True
    json: bool = True


class Deadline:
    """Time budget and cancellation signal for one pool's unlock attempt."""

    def __init__(self, seconds: float, clock=time.monotonic):
        self._clock = clock
        self.budget = seconds
        self.expires_at = clock() + seconds
        self._cancelled = threading.Event()

    def remaining(self) -> float:
        if self._cancelled.is_set():
            return 0.0
        return max(0.0, self.expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()


@dataclass
class PoolOutcome:
    pool: str
    state: str
    reason: Optional[str] = None
    detail: Optional[str] = None
    identity: Optional[str] = None
    attempts: int = 0
    duration: float = 0.0
    tried: list = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.state == FAILED

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["duration"] = round(self.duration, 3)
        return data
