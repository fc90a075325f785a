"""Bookkeeping for transient files written while serving a request."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path


class FileRole(str, Enum):
    """Stage of the pipeline a transient file belongs to."""

    SOURCE = "source"
    INTERMEDIATE = "intermediate"
    OUTPUT = "output"


@dataclass(frozen=True, slots=True)
class FileRecord:
    """A tracked file awaiting deletion."""

    path: Path
    role: FileRole
    created_at: datetime


@dataclass(frozen=True, slots=True)
class RetentionPolicy:
    """Timings (in seconds) governing when transient files are removed."""

    grace_period: float = 5.0
    sweep_interval: float = 15 * 60
    max_age: float = 15 * 60
    max_retries: int = 3
    retry_delay: float = 1.0


class RequestFiles:
    """Allocates collision-free paths for one request and remembers them.

    A record is created as soon as a path is handed out, before anything is
    written there, so a write that fails halfway still gets cleaned up.
    """

    def __init__(self, upload_dir: Path, temp_dir: Path, output_dir: Path) -> None:
        self._dirs = {
            FileRole.SOURCE: upload_dir,
            FileRole.INTERMEDIATE: temp_dir,
            FileRole.OUTPUT: output_dir,
        }
        self._records: dict[Path, FileRecord] = {}
        self.released = False

    def allocate(self, role: FileRole, prefix: str, suffix: str = ".jpg") -> Path:
        """Return a fresh path in the directory for ``role`` and track it."""

        path = self._dirs[role] / f"{prefix}_{uuid.uuid4().hex}{suffix}"
        self._records[path] = FileRecord(
            path=path,
            role=role,
            created_at=datetime.now(timezone.utc),
        )
        return path

    @property
    def records(self) -> tuple[FileRecord, ...]:
        return tuple(self._records.values())

    @property
    def paths(self) -> list[Path]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)
