import errno
import os

import pytest

from mbxcore.store import FileSystemStore, MemoryStore


@pytest.fixture
def fs():
    return FileSystemStore()


def test_missing_file_has_no_mtime(fs, tmp_path):
    assert fs.mtime(tmp_path / "OUT.TXT") is None
    assert not fs.exists(tmp_path / "OUT.TXT")


def test_remove_is_idempotent(fs, tmp_path):
    target = tmp_path / "CMD.RUN"
    fs.remove(target)
    target.write_text("x")
    fs.remove(target)
    fs.remove(target)
    assert not target.exists()


def test_write_read_keeps_crlf(fs, tmp_path):
    target = tmp_path / "CMD.NEW"
    fs.write_text(target, "dir\r\necho hi\r\n")
    assert target.read_bytes() == b"dir\r\necho hi\r\n"
    assert fs.read_text(target) == "dir\r\necho hi\r\n"


def test_read_replaces_undecodable_bytes(fs, tmp_path):
    target = tmp_path / "OUT.TXT"
    target.write_bytes(b"ok \xff\r\n")
    assert fs.read_text(target) == "ok \ufffd\r\n"


def test_write_substitutes_characters_the_encoding_lacks(tmp_path):
    target = tmp_path / "OUT.NEW"
    FileSystemStore(encoding="cp1252").write_text(target, "bad \ufffd\r\n")
    assert target.read_bytes() == b"bad ?\r\n"

    FileSystemStore(encoding="cp437").write_text(target, "echo 5\u20ac\r\n")
    assert target.read_bytes() == b"echo 5?\r\n"


def test_rename_replaces_existing_destination_in_one_step(fs, tmp_path, monkeypatch):
    src, dst = tmp_path / "CMD.NEW", tmp_path / "CMD.TXT"
    src.write_text("ver")
    dst.write_text("dir")

    def no_copy(a, b):
        raise AssertionError("fell back to copying")

    monkeypatch.setattr("mbxcore.store.shutil.copyfile", no_copy)
    fs.rename(src, dst, fallback=False)

    assert dst.read_text() == "ver"
    assert not src.exists()


def test_atomic_publish_replaces_final_and_clears_staging(fs, tmp_path):
    staging, final = tmp_path / "OUT.NEW", tmp_path / "OUT.TXT"
    final.write_text("old")
    staging.write_text("leftover from a crash")

    fs.atomic_publish(staging, final, "new\r\n")

    assert final.read_bytes() == b"new\r\n"
    assert not staging.exists()


def test_append_text(fs, tmp_path):
    log = tmp_path / "LOG.TXT"
    fs.append_text(log, "one\r\n")
    fs.append_text(log, "two\r\n")
    assert log.read_bytes() == b"one\r\ntwo\r\n"


def test_rename_missing_source_never_falls_back(fs, tmp_path):
    with pytest.raises(FileNotFoundError):
        fs.rename(tmp_path / "CMD.TXT", tmp_path / "CMD.RUN")
    assert not (tmp_path / "CMD.RUN").exists()


def test_rename_falls_back_to_copy(fs, tmp_path, monkeypatch):
    src, dst = tmp_path / "CMD.NEW", tmp_path / "CMD.TXT"
    src.write_text("dir")
    dst.write_text("older command")

    def refuse(a, b):
        raise FileExistsError(errno.EEXIST, "exists", str(b))

    monkeypatch.setattr("mbxcore.store.os.replace", refuse)
    fs.rename(src, dst)

    assert dst.read_text() == "dir"
    assert not src.exists()


def test_rename_without_fallback_raises(fs, tmp_path, monkeypatch):
    src, dst = tmp_path / "CMD.TXT", tmp_path / "CMD.RUN"
    src.write_text("dir")

    def refuse(a, b):
        raise PermissionError(errno.EACCES, "busy", str(a))

    monkeypatch.setattr("mbxcore.store.os.replace", refuse)
    with pytest.raises(PermissionError):
        fs.rename(src, dst, fallback=False)

    assert src.exists()
    assert not dst.exists()


def test_fallback_undoes_copy_when_source_cannot_be_deleted(fs, tmp_path, monkeypatch):
    src, dst = tmp_path / "OUT.NEW", tmp_path / "OUT.TXT"
    src.write_text("result")
    real_remove = os.remove

    def refuse_rename(a, b):
        raise OSError(errno.EXDEV, "cross-device", str(a))

    def refuse_src_remove(path):
        if str(path) == str(src):
            raise PermissionError(errno.EACCES, "locked", str(path))
        real_remove(path)

    monkeypatch.setattr("mbxcore.store.os.replace", refuse_rename)
    monkeypatch.setattr("mbxcore.store.os.remove", refuse_src_remove)

    with pytest.raises(PermissionError):
        fs.rename(src, dst)

    assert src.exists()
    assert not dst.exists()


def test_memory_store_stamps_always_advance():
    store = MemoryStore()
    store.write_text("/mbx/OUT.NEW", "a")
    store.rename("/mbx/OUT.NEW", "/mbx/OUT.TXT")
    first = store.mtime("/mbx/OUT.TXT")

    store.atomic_publish("/mbx/OUT.NEW", "/mbx/OUT.TXT", "a")
    assert store.mtime("/mbx/OUT.TXT") > first
    assert not store.exists("/mbx/OUT.NEW")


def test_memory_store_injected_faults_are_consumed():
    store = MemoryStore()
    store.write_text("/mbx/CMD.TXT", "dir")
    store.inject_fault("rename", "/mbx/CMD.TXT", PermissionError(errno.EACCES, "busy"), times=2)

    for _ in range(2):
        with pytest.raises(PermissionError):
            store.rename("/mbx/CMD.TXT", "/mbx/CMD.RUN")
    store.rename("/mbx/CMD.TXT", "/mbx/CMD.RUN")

    assert store.read_text("/mbx/CMD.RUN") == "dir"


def test_memory_store_read_missing_raises():
    with pytest.raises(FileNotFoundError):
        MemoryStore().read_text("/mbx/OUT.TXT")
