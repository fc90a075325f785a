"""Cleanup tasks for transient upload, intermediate and output files."""

from __future__ import annotations

import asyncio
import contextlib
import errno
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from signature_formatter.config.settings import Settings
from signature_formatter.errors import DeletionError
from signature_formatter.metrics.prometheus_exporter import (
    file_deletion_failures_total,
    files_deleted_total,
)
from signature_formatter.storage.files import RequestFiles, RetentionPolicy

logger = logging.getLogger(__name__)

TRANSIENT_ERRNOS = frozenset({errno.EBUSY, errno.EPERM, errno.EACCES})


@dataclass(slots=True)
class SweepReport:
    """Counters collected by a single directory sweep."""

    scanned: int = 0
    deleted: int = 0
    failed: int = 0


def _unlink(path: Path) -> bool:
    """Remove ``path``; return False when it was already gone."""

    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        transient = isinstance(exc, PermissionError) or exc.errno in TRANSIENT_ERRNOS
        raise DeletionError(f"Cannot delete {path}: {exc}", transient=transient) from exc
    return True


def _stale_files(directory: Path, cutoff: float) -> tuple[int, list[Path]]:
    """Return the number of regular files scanned and those modified before ``cutoff``."""

    scanned = 0
    stale: list[Path] = []
    with os.scandir(directory) as entries:
        for entry in entries:
            if not entry.is_file(follow_symlinks=False):
                continue
            try:
                modified = entry.stat(follow_symlinks=False).st_mtime
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.error("Error getting stats of file %s: %s", entry.path, exc)
                continue
            scanned += 1
            if modified < cutoff:
                stale.append(Path(entry.path))
    return scanned, stale


class FileLifecycleManager:
    """Reclaims transient files after each request and on a fixed cadence.

    Two independent mechanisms share one deletion primitive:

    * :meth:`release` schedules deletion of everything a request wrote once
      ``policy.grace_period`` has elapsed;
    * :meth:`sweep` removes any file older than ``policy.max_age`` from the
      managed directories, whether or not a request ever referenced it.

    Both tolerate files that are already gone, so they may race freely.
    Nothing here raises into a request.
    """

    def __init__(
        self,
        policy: RetentionPolicy,
        upload_dir: Path,
        temp_dir: Path,
        output_dir: Path,
    ) -> None:
        self._policy = policy
        self._upload_dir = upload_dir
        self._temp_dir = temp_dir
        self._output_dir = output_dir
        self._pending: set[asyncio.Task[None]] = set()
        self._sweeper: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> FileLifecycleManager:
        policy = RetentionPolicy(
            grace_period=settings.cleanup_grace_seconds,
            sweep_interval=settings.sweep_interval_seconds,
            max_age=settings.file_max_age_seconds,
            max_retries=settings.delete_max_retries,
            retry_delay=settings.delete_retry_delay_seconds,
        )
        return cls(policy, *settings.managed_dirs)

    @property
    def policy(self) -> RetentionPolicy:
        return self._policy

    @property
    def directories(self) -> tuple[Path, Path, Path]:
        return self._upload_dir, self._temp_dir, self._output_dir

    @property
    def pending_cleanups(self) -> int:
        return len(self._pending)

    def ensure_directories(self) -> None:
        """Create the managed directories if they are missing."""

        for directory in self.directories:
            directory.mkdir(parents=True, exist_ok=True)

    def new_scope(self) -> RequestFiles:
        """Return a fresh tracker for the files of one request."""

        return RequestFiles(self._upload_dir, self._temp_dir, self._output_dir)

    async def release(self, files: RequestFiles) -> asyncio.Task[None] | None:
        """Schedule deferred deletion of every file tracked by ``files``.

        Must be called once per request, after the response has been sent or
        the request has failed. Repeated calls for the same scope are ignored.
        """

        if files.released:
            logger.warning("Request files were already released; ignoring repeat release.")
            return None
        files.released = True

        task = asyncio.get_running_loop().create_task(self._cleanup_after_grace(files.paths))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _cleanup_after_grace(self, paths: list[Path]) -> None:
        await asyncio.sleep(self._policy.grace_period)
        try:
            await self.delete_all(paths)
        except Exception:  # pragma: no cover - cleanup must never escape
            logger.exception("Deferred cleanup failed")

    async def delete_all(self, paths: Iterable[Path]) -> list[bool]:
        """Delete ``paths`` concurrently; return per-path success flags."""

        return list(await asyncio.gather(*(self.delete(path) for path in paths)))

    async def delete(self, path: Path) -> bool:
        """Delete ``path`` with bounded retries.

        Returns True when the file is gone afterwards (including when it never
        existed). Transient failures such as a locked file are retried up to
        ``policy.max_retries`` times, ``policy.retry_delay`` seconds apart;
        other failures are logged and abandoned.
        """

        attempts = self._policy.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                existed = await asyncio.to_thread(_unlink, path)
            except DeletionError as exc:
                if not exc.transient:
                    logger.error("Error deleting file %s: %s", path, exc)
                    break
                if attempt == attempts:
                    logger.error("Failed to delete file %s after %d attempts", path, attempts)
                    break
                logger.debug("Deletion of %s failed transiently (attempt %d)", path, attempt)
                await asyncio.sleep(self._policy.retry_delay)
                continue

            if existed:
                files_deleted_total.inc()
            return True

        file_deletion_failures_total.inc()
        return False

    async def sweep(self, now: float | None = None) -> SweepReport:
        """Delete every managed file last modified more than ``max_age`` ago."""

        cutoff = (time.time() if now is None else now) - self._policy.max_age
        report = SweepReport()
        for directory in self.directories:
            try:
                scanned, stale = await asyncio.to_thread(_stale_files, directory, cutoff)
            except FileNotFoundError:
                logger.warning("Managed directory %s does not exist; skipping.", directory)
                continue
            except OSError as exc:
                logger.error("Error reading directory %s: %s", directory, exc)
                continue

            report.scanned += scanned
            for removed in await self.delete_all(stale):
                if removed:
                    report.deleted += 1
                else:
                    report.failed += 1

        if report.deleted or report.failed:
            logger.info(
                "Sweep removed %d of %d files (%d failed)",
                report.deleted,
                report.scanned,
                report.failed,
            )
        return report

    async def _run_periodic_sweep(self) -> None:
        while True:
            try:
                await self.sweep()
            except Exception:  # pragma: no cover - keep the loop alive
                logger.exception("Periodic sweep failed")
            await asyncio.sleep(self._policy.sweep_interval)

    def start(self) -> None:
        """Create directories and launch the periodic sweep on the running loop."""

        self.ensure_directories()
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._run_periodic_sweep())
        logger.info(
            "Sweeping %s every %ss (max age %ss)",
            ", ".join(str(directory) for directory in self.directories),
            self._policy.sweep_interval,
            self._policy.max_age,
        )

    async def stop(self) -> None:
        """Cancel the sweep loop and any deferred cleanups still waiting.

        Files those cleanups would have removed are picked up by the next
        sweep after restart.
        """

        tasks = list(self._pending)
        if self._sweeper is not None:
            tasks.append(self._sweeper)
            self._sweeper = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
