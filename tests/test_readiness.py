import pytest

from autounlock import readiness
from autounlock.errors import KeystoreMountError, PoolImportError
from autounlock.model import Deadline, PoolSpec


def test_already_imported_pool_is_left_alone(host, make_pool, identity_files):
    pool = make_pool("tank")
    host.add_pool("tank", pool.encrypted_key_file, identity_files[:1])

    assert readiness.ensure_imported(pool, Deadline(10)) is False
    assert not any(cmd[:2] == ["zpool", "import"] for cmd in host.calls)


def test_missing_pool_is_imported_without_mounting(host, make_pool, identity_files):
    pool = make_pool("tank")
    host.add_pool("tank", pool.encrypted_key_file, identity_files[:1], imported=False)

    assert readiness.ensure_imported(pool, Deadline(10)) is True
    assert ["zpool", "import", "-N", "tank"] in host.calls
    # verified by listing again after the import
    assert [cmd[:2] for cmd in host.calls].count(["zpool", "list"]) == 2


def test_import_failure_raises(host, make_pool):
    pool = make_pool("ghost")
    with pytest.raises(PoolImportError, match="no such pool"):
        readiness.ensure_imported(pool, Deadline(10))


def test_pool_list_failure_raises(host, make_pool):
    host.list_rc = 1
    with pytest.raises(PoolImportError, match="zpool list failed"):
        readiness.ensure_imported(make_pool("tank"), Deadline(10))


def test_keystore_mount_error_is_only_a_warning_when_directory_exists(host, make_pool, _isolated_logs):
    pool = make_pool("tank")
    host.mount_rc = 1

    assert readiness.ensure_keystore_mounted(pool, Deadline(10)) == pool.keystore_dir
    assert ["zfs", "mount", "tank/keystore"] in host.calls
    log_text = (_isolated_logs / "zfs-auto-unlock.jsonl").read_text(encoding="utf-8")
    assert "readiness.mount_rc" in log_text


def test_missing_mountpoint_after_mount_is_an_error(host, make_pool):
    pool = make_pool("tank", create_dir=False)
    with pytest.raises(KeystoreMountError, match="does not exist"):
        readiness.ensure_keystore_mounted(pool, Deadline(10))


def test_relative_key_file_uses_current_directory(host, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "tank.age").write_bytes(b"age-encryption.org/v1\n")
    pool = PoolSpec("tank", "tank.age")

    assert readiness.ensure_keystore_mounted(pool, Deadline(10)) == "."
