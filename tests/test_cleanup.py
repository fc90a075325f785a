"""Tests for deferred deletion and the periodic sweep."""

from __future__ import annotations

import asyncio
import contextlib
import errno
import os
import time
from pathlib import Path
from types import SimpleNamespace

import pytest
import pytest_mock

from signature_formatter.errors import DeletionError
from signature_formatter.storage.files import FileRole, RetentionPolicy
from signature_formatter.workers import cleanup
from signature_formatter.workers.cleanup import FileLifecycleManager


def _manager(tmp_path: Path, **policy: float) -> FileLifecycleManager:
    defaults = {"grace_period": 0.0, "max_age": 60.0, "max_retries": 3, "retry_delay": 0.0}
    defaults.update(policy)
    manager = FileLifecycleManager(
        RetentionPolicy(**defaults),
        tmp_path / "uploads",
        tmp_path / "temp",
        tmp_path / "output",
    )
    manager.ensure_directories()
    return manager


def _age(path: Path, seconds: float) -> None:
    past = time.time() - seconds
    os.utime(path, (past, past))


@pytest.mark.asyncio
async def test_delete_removes_file(tmp_path: Path) -> None:
    manager = _manager(tmp_path)
    target = tmp_path / "temp" / "a.jpg"
    target.write_bytes(b"x")

    assert await manager.delete(target)
    assert not target.exists()


@pytest.mark.asyncio
async def test_delete_of_missing_file_succeeds(tmp_path: Path) -> None:
    manager = _manager(tmp_path)

    assert await manager.delete(tmp_path / "temp" / "never-existed.jpg")


@pytest.mark.asyncio
async def test_transient_failures_are_retried(tmp_path: Path, mocker: pytest_mock.MockerFixture) -> None:
    unlink = mocker.patch(
        "signature_formatter.workers.cleanup._unlink",
        side_effect=[
            DeletionError("busy", transient=True),
            DeletionError("busy", transient=True),
            True,
        ],
    )
    manager = _manager(tmp_path)

    assert await manager.delete(tmp_path / "temp" / "locked.jpg")
    assert unlink.call_count == 3


@pytest.mark.asyncio
async def test_retries_are_bounded(tmp_path: Path, mocker: pytest_mock.MockerFixture) -> None:
    unlink = mocker.patch(
        "signature_formatter.workers.cleanup._unlink",
        side_effect=DeletionError("busy", transient=True),
    )
    manager = _manager(tmp_path, max_retries=2)

    assert not await manager.delete(tmp_path / "temp" / "locked.jpg")
    assert unlink.call_count == 3


@pytest.mark.asyncio
async def test_permanent_failures_are_not_retried(tmp_path: Path, mocker: pytest_mock.MockerFixture) -> None:
    unlink = mocker.patch(
        "signature_formatter.workers.cleanup._unlink",
        side_effect=DeletionError("gone wrong", transient=False),
    )
    manager = _manager(tmp_path)

    assert not await manager.delete(tmp_path / "temp" / "broken.jpg")
    assert unlink.call_count == 1


def test_unlink_classifies_errors(tmp_path: Path, mocker: pytest_mock.MockerFixture) -> None:
    target = tmp_path / "file.jpg"
    mocker.patch.object(Path, "unlink", side_effect=PermissionError(errno.EACCES, "denied"))
    with pytest.raises(DeletionError) as locked:
        cleanup._unlink(target)
    assert locked.value.transient

    mocker.patch.object(Path, "unlink", side_effect=IsADirectoryError(errno.EISDIR, "is a directory"))
    with pytest.raises(DeletionError) as permanent:
        cleanup._unlink(target)
    assert not permanent.value.transient


@pytest.mark.asyncio
async def test_release_deletes_every_request_file(tmp_path: Path) -> None:
    manager = _manager(tmp_path)
    files = manager.new_scope()
    written = [
        files.allocate(FileRole.SOURCE, "upload", ""),
        files.allocate(FileRole.INTERMEDIATE, "temp_signature"),
        files.allocate(FileRole.OUTPUT, "formatted_signature"),
    ]
    for path in written[:2]:
        path.write_bytes(b"x")

    task = await manager.release(files)
    assert task is not None
    await task

    assert not any(path.exists() for path in written)
    assert manager.pending_cleanups == 0


@pytest.mark.asyncio
async def test_second_release_is_ignored(tmp_path: Path) -> None:
    manager = _manager(tmp_path)
    files = manager.new_scope()

    first = await manager.release(files)
    second = await manager.release(files)

    assert first is not None
    assert second is None
    await first


@pytest.mark.asyncio
async def test_release_waits_for_grace_period(tmp_path: Path) -> None:
    manager = _manager(tmp_path, grace_period=30.0)
    files = manager.new_scope()
    output = files.allocate(FileRole.OUTPUT, "formatted_signature")
    output.write_bytes(b"x")

    await manager.release(files)
    await asyncio.sleep(0.05)

    assert output.exists()
    assert manager.pending_cleanups == 1
    await manager.stop()
    assert manager.pending_cleanups == 0


@pytest.mark.asyncio
async def test_sweep_removes_only_stale_files(tmp_path: Path) -> None:
    manager = _manager(tmp_path)
    stale = tmp_path / "uploads" / "orphan"
    fresh = tmp_path / "output" / "formatted_signature_new.jpg"
    stale.write_bytes(b"x")
    fresh.write_bytes(b"x")
    (tmp_path / "temp" / "nested").mkdir()
    _age(stale, 3600)

    report = await manager.sweep()

    assert not stale.exists()
    assert fresh.exists()
    assert (tmp_path / "temp" / "nested").is_dir()
    assert (report.scanned, report.deleted, report.failed) == (2, 1, 0)


@pytest.mark.asyncio
async def test_sweep_skips_missing_directories(tmp_path: Path) -> None:
    manager = FileLifecycleManager(
        RetentionPolicy(max_age=60.0),
        tmp_path / "uploads",
        tmp_path / "missing",
        tmp_path / "output",
    )
    (tmp_path / "uploads").mkdir()
    (tmp_path / "output").mkdir()
    stale = tmp_path / "output" / "old.jpg"
    stale.write_bytes(b"x")
    _age(stale, 3600)

    report = await manager.sweep()

    assert report.deleted == 1
    assert not stale.exists()


@pytest.mark.asyncio
async def test_started_manager_sweeps_immediately(tmp_path: Path) -> None:
    manager = _manager(tmp_path, sweep_interval=3600.0)
    stale = tmp_path / "temp" / "left_over.jpg"
    stale.write_bytes(b"x")
    _age(stale, 3600)

    manager.start()
    try:
        for _ in range(200):
            if not stale.exists():
                break
            await asyncio.sleep(0.01)
    finally:
        await manager.stop()

    assert not stale.exists()


class _FakeEntry:
    """Minimal ``os.DirEntry`` stand-in with a configurable ``stat``."""

    def __init__(self, path: Path, mtime: float | None) -> None:
        self.path = str(path)
        self._mtime = mtime

    def is_file(self, follow_symlinks: bool = True) -> bool:
        return True

    def stat(self, follow_symlinks: bool = True) -> SimpleNamespace:
        if self._mtime is None:
            raise FileNotFoundError(self.path)
        return SimpleNamespace(st_mtime=self._mtime)


def test_vanished_files_are_not_counted_as_scanned(
    tmp_path: Path,
    mocker: pytest_mock.MockerFixture,
) -> None:
    old = tmp_path / "old.jpg"
    entries = [_FakeEntry(tmp_path / "gone.jpg", None), _FakeEntry(old, 0.0)]
    mocker.patch.object(cleanup.os, "scandir", return_value=contextlib.nullcontext(entries))

    scanned, stale = cleanup._stale_files(tmp_path, cutoff=time.time())

    assert scanned == 1
    assert stale == [old]
