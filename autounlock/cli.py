"""CLI entrypoint for unlocking encrypted ZFS pools at boot."""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from typing import Any, Dict, Optional

from .config import load_config, parse_duration
from .errors import ConfigError
from .executil import append_jsonl, error, info, resolve_log_path
from .fleet import run_fleet
from .model import Flags, UnlockConfig
from .paths import default_config_path, key_dir

RESULT_CODES: Dict[str, int] = {
    "UNLOCK_OK": 0,
    "PLAN_OK": 0,
    "FAIL_POOLS": 1,
    "FAIL_CONFIG": 2,
    "FAIL_UNHANDLED": 12,
}

CLI_START_MONO = time.perf_counter()
JSON_OUTPUT_ENABLED = True


def _emit_result(kind: str, extra: Optional[Dict[str, Any]] = None) -> None:
    payload: Dict[str, Any] = {"result": kind, "ts": int(time.time())}
    if extra:
        payload.update(extra)
    log_path = resolve_log_path()
    if log_path:
        payload.setdefault("log_path", log_path)
        append_jsonl(log_path, payload)
    payload["timing_total_ms"] = int(max(0.0, (time.perf_counter() - CLI_START_MONO) * 1000))
    if JSON_OUTPUT_ENABLED:
        print(json.dumps(payload, sort_keys=True, separators=(",", ":")))
    code = RESULT_CODES.get(kind, 1)
    raise SystemExit(code)


def _planned_steps(pool_name: str) -> list[str]:
    return [
        f"zpool list -H -o name (import -N {pool_name} if absent)",
        f"zfs mount {pool_name}/keystore",
        f"zfs get -H -o value keystatus {pool_name}",
        "age --decrypt -i <identity> <encryptedKeyFile> (per identity, until available)",
        f"zfs load-key -L file://<tmp> {pool_name}",
    ]


def _plan_payload(config: UnlockConfig, flags: Flags) -> Dict[str, Any]:
    pools = []
    skipped = []
    for pool in config.pools:
        if not pool.complete:
            skipped.append({"name": pool.name, "encryptedKeyFile": pool.encrypted_key_file})
            continue
        pools.append(
            {
                "name": pool.name,
                "encryptedKeyFile": pool.encrypted_key_file,
                "keystore": pool.keystore_dataset,
                "steps": _planned_steps(pool.name),
            }
        )
    identities = [
        {"path": ident, "exists": os.path.exists(ident)} for ident in config.identity_files if ident
    ]
    return {
        "config": config.source,
        "timeout": flags.timeout,
        "jobs": flags.jobs,
        "mount_all": flags.mount_all,
        "key_dir": key_dir(),
        "identities": identities,
        "pools": pools,
        "skipped": skipped,
    }


def _duration_arg(text: str) -> float:
    try:
        return parse_duration(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _jobs_arg(text: str) -> int:
    try:
        value = int(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid job count: {text!r}") from exc
    if value < 1:
        raise argparse.ArgumentTypeError("job count must be at least 1")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="zfs-auto-unlock", add_help=True)
    parser.add_argument("--config", default=default_config_path(), help="path to JSON config file")
    parser.add_argument("--timeout", type=_duration_arg, default=60.0, help="per-pool timeout (e.g. 60s, 2m)")
    parser.add_argument("--jobs", type=_jobs_arg, default=1, help="pools to unlock concurrently")
    parser.add_argument("--plan", action="store_true")
    parser.add_argument("--no-mount-all", dest="mount_all", action="store_false", default=True)
    parser.add_argument("--json", dest="json", action="store_true", default=True)
    parser.add_argument("--no-json", dest="json", action="store_false")
    return parser


def _flags_from_args(args: argparse.Namespace) -> Flags:
    return Flags(
        timeout=args.timeout,
        jobs=args.jobs,
        plan=args.plan,
        mount_all=args.mount_all,
        json=args.json,
    )


def _main_impl(argv: Optional[list[str]] = None) -> int:
    global JSON_OUTPUT_ENABLED
    args = build_parser().parse_args(argv)
    flags = _flags_from_args(args)
    JSON_OUTPUT_ENABLED = flags.json

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        error("cli.config_invalid", config=args.config, error=str(exc))
        _emit_result("FAIL_CONFIG", {"config": args.config, "error": str(exc)})

    if flags.plan:
        _emit_result("PLAN_OK", _plan_payload(config, flags))

    info("cli.start", config=config.source, pools=len(config.pools), timeout=flags.timeout, jobs=flags.jobs)
    report = run_fleet(config, flags)
    kind = "UNLOCK_OK" if report.exit_code == 0 else "FAIL_POOLS"
    _emit_result(kind, report.to_dict())
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    try:
        return _main_impl(argv)
    except SystemExit:
        raise
    except Exception as exc:  # noqa: BLE001
        error("cli.unhandled", error=repr(exc))
        _emit_result("FAIL_UNHANDLED", extra={"error": str(exc)})
    return 0


if __name__ == "__main__":
    sys.exit(main())
