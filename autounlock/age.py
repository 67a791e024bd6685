"""age decryption of wrapped pool keys."""

from __future__ import annotations

from typing import IO

from .executil import Result, run


def decrypt(identity: str, encrypted_file: str, out: IO, timeout: float | None = 60.0) -> Result:
    """Decrypt ``encrypted_file`` with ``identity`` straight into ``out``."""

    cmd = ["age", "--decrypt", "-i", identity, encrypted_file]
    return run(cmd, check=False, timeout=timeout, stdout=out)
