"""Unlock configuration loading (JSON) and CLI value parsing."""

from __future__ import annotations

import json
import math
import re
from typing import Any, Dict

from .errors import ConfigError
from .executil import trace, warn
from .model import PoolSpec, UnlockConfig

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(text: str) -> float:
    """Parse ``90``, ``90s``, ``2m``, ``1m30s`` or ``500ms`` into seconds."""

    raw = (text or "").strip().lower()
    if not raw:
        raise ValueError("empty duration")
    try:
        seconds = float(raw)
    except ValueError:
        pos = 0
        seconds = 0.0
        for match in _DURATION_PART_RE.finditer(raw):
            if match.start() != pos:
                raise ValueError(f"invalid duration: {text!r}") from None
            seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
            pos = match.end()
        if pos != len(raw) or pos == 0:
            raise ValueError(f"invalid duration: {text!r}") from None
    if not math.isfinite(seconds) or seconds <= 0:
        raise ValueError(f"duration must be positive: {text!r}")
    return seconds


def _pool_from_entry(entry: Any) -> PoolSpec:
    if not isinstance(entry, dict):
        return PoolSpec(name="", encrypted_key_file="")
    name = entry.get("name") or ""
    key_file = entry.get("encryptedKeyFile") or ""
    return PoolSpec(name=str(name).strip(), encrypted_key_file=str(key_file).strip())


def parse_config(payload: Dict[str, Any], source: str | None = None) -> UnlockConfig:
    if not isinstance(payload, dict):
        raise ConfigError("config must be a JSON object")

    identities = payload.get("identityFiles")
    if not isinstance(identities, list) or not identities:
        raise ConfigError("config has no identityFiles")
    pools_raw = payload.get("pools")
    if not isinstance(pools_raw, list) or not pools_raw:
        raise ConfigError("config has no pools")

    pools: list[PoolSpec] = []
    seen: set[str] = set()
    for entry in pools_raw:
        pool = _pool_from_entry(entry)
        if pool.name and pool.name in seen:
            warn("config.duplicate_pool", pool=pool.name)
            continue
        if pool.name:
            seen.add(pool.name)
        pools.append(pool)

    # blank identity entries are kept so the trial loop can skip them in order
    identity_files = tuple("" if item is None else str(item).strip() for item in identities)
    config = UnlockConfig(identity_files=identity_files, pools=tuple(pools), source=source)
    trace("config.loaded", source=source, pools=[p.name for p in pools], identities=len(identity_files))
    return config


def load_config(path: str) -> UnlockConfig:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            payload = json.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"open config {path}: not found") from exc
    except OSError as exc:
        raise ConfigError(f"open config {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"parse config {path}: {exc}") from exc
    return parse_config(payload, source=path)
