"""Failure kinds raised while unlocking a pool."""

from __future__ import annotations


class ConfigError(RuntimeError):
    """Raised when the unlock configuration cannot be used at all."""


class UnlockError(RuntimeError):
    reason = "error"

    def __init__(self, message: str, *, pool: str | None = None) -> None:
        super().__init__(message)
        self.pool = pool


class PoolImportError(UnlockError):
    reason = "import_failed"


class KeystoreMountError(UnlockError):
    reason = "keystore_unmounted"


class KeyFileMissing(UnlockError):
    reason = "key_file_missing"


class DecryptError(UnlockError):
    reason = "decrypt_failed"


class LoadKeyError(UnlockError):
    reason = "load_key_failed"


class IdentitiesExhausted(UnlockError):
    reason = "identities_exhausted"

    def __init__(self, message: str, *, pool: str | None = None, attempts: int = 0, tried=None) -> None:
        super().__init__(message, pool=pool)
        self.attempts = attempts
        self.tried = list(tried or [])


class ProbeError(UnlockError):
    reason = "probe_failed"

    def __init__(self, message: str, *, pool: str | None = None, value: str | None = None) -> None:
        super().__init__(message, pool=pool)
        self.value = value


class UnlockTimeout(UnlockError):
    reason = "timeout"
