"""Periodic zip backups of the data folder.

A backup copies every ``.xlsx`` table file of the data folder into a
timestamped archive together with a small text manifest. The archive is
first written under a ``.partial`` name and only renamed once it is
complete; the ``.last_backup`` watermark is advanced after the rename, so a
crash mid-backup leaves a ``.partial`` file behind and the next check still
considers the backup overdue. Leftover ``.partial`` files are removed once a
later backup succeeds.
"""

from __future__ import annotations

import os
import re
import tempfile
import threading
import zipfile
import zlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional

from . import data_manager, log
from .errors import StorageIOError


ARCHIVE_PREFIX = "Backup_"
ARCHIVE_SUFFIX = ".zip"
PARTIAL_SUFFIX = ".partial"
ARCHIVE_TIME_FORMAT = "%Y-%m-%d_%H-%M-%S-%f"
MANIFEST_NAME = "backup_manifest.txt"
WATERMARK_NAME = ".last_backup"
MANIFEST_FILE_MARKER = "  - "
SEQUENCE_WIDTH = 4


@dataclass(frozen=True)
class BackupInfo:
    """Snapshot of the backup folder: watermark plus archives, newest first."""

    last_backup_at: Optional[datetime]
    archives: List[Path] = field(default_factory=list)

    @property
    def latest_archive(self) -> Optional[Path]:
        return self.archives[0] if self.archives else None


class BackupScheduler:
    """Create, rotate and inspect backup archives.

    Args:
        data_folder: Folder whose ``.xlsx`` files are archived.
        backup_folder: Destination folder, ``<data_folder>/Backups`` by default.
        interval: Minimum age of the last backup before a new one is due.
        poll_interval: How often the background thread re-checks.
        max_backups: Number of archives kept after each backup.
        clock: Callable returning the current aware ``datetime``.
        on_backup: Called with the archive path after every automatic backup.
    """

    def __init__(
        self,
        data_folder: Path,
        backup_folder: Optional[Path] = None,
        *,
        interval: timedelta = timedelta(days=data_manager.DEFAULT_BACKUP_INTERVAL_DAYS),
        poll_interval: timedelta = timedelta(minutes=data_manager.DEFAULT_POLL_MINUTES),
        max_backups: int = data_manager.DEFAULT_MAX_BACKUPS,
        clock: Optional[Callable[[], datetime]] = None,
        on_backup: Optional[Callable[[Path], object]] = None,
    ) -> None:
        if max_backups < 1:
            raise ValueError("max_backups must be at least 1")

        self.data_folder = Path(data_folder)
        self.backup_folder = Path(backup_folder) if backup_folder else self.data_folder / "Backups"
        self.backup_folder.mkdir(parents=True, exist_ok=True)
        self.watermark_path = self.backup_folder / WATERMARK_NAME
        self.interval = interval
        self.poll_interval = poll_interval
        self.max_backups = max_backups
        self.on_backup = on_backup
        self._clock = clock or data_manager.utcnow
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # Scheduling ---------------------------------------------------------

    def start(self) -> None:
        """Back up now if overdue, then keep checking on a daemon thread."""

        if self._thread is not None and self._thread.is_alive():
            log.warning("Backup scheduler already running")
            return

        self._check_and_run()
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._poll_loop, name="backup-poller", daemon=True)
        self._thread.start()
        log.info("Backup scheduler started (interval %s, poll %s)", self.interval, self.poll_interval)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Ask the polling thread to exit and wait for it."""

        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            log.info("Backup scheduler stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _poll_loop(self) -> None:
        while not self._stop_event.wait(self.poll_interval.total_seconds()):
            try:
                self._check_and_run()
            except OSError:
                log.exception("Scheduled backup failed; will retry on the next poll")

    def _check_and_run(self) -> Optional[Path]:
        if not self.is_backup_overdue():
            return None
        archive = self.run_backup()
        if self.on_backup is not None:
            self.on_backup(archive)
        return archive

    # Watermark ----------------------------------------------------------

    def last_backup_at(self) -> Optional[datetime]:
        """Return the watermark, or ``None`` when missing or unreadable."""

        if not self.watermark_path.exists():
            return None
        try:
            return data_manager.parse_timestamp(self.watermark_path.read_text(encoding="utf-8").strip())
        except ValueError:
            log.warning("Ignoring unparsable backup watermark in '%s'", self.watermark_path)
            return None

    def is_backup_overdue(self) -> bool:
        last = self.last_backup_at()
        if last is None:
            return True
        return self._clock() - last >= self.interval

    def _write_watermark(self, moment: datetime) -> None:
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=".last_backup-", suffix=".tmp", dir=self.backup_folder)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(data_manager.format_timestamp(moment))
            os.replace(tmp_name, self.watermark_path)
        except OSError as exc:
            raise StorageIOError(
                f"Unable to update backup watermark {self.watermark_path}: {exc}",
                path=self.watermark_path,
            ) from exc

    # Backups ------------------------------------------------------------

    def run_backup(self) -> Path:
        """Archive every table file now, regardless of the schedule.

        Returns:
            Path: Location of the finished ``.zip`` archive.

        Raises:
            StorageIOError: If a table file cannot be read or the archive
                cannot be written. The watermark is left untouched.
        """

        with self._lock:
            now = self._clock()
            sources = self._read_sources()
            final_path = self._archive_path(now)
            partial_path = final_path.with_name(final_path.name + PARTIAL_SUFFIX)

            try:
                with zipfile.ZipFile(partial_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
                    for name, payload in sources.items():
                        archive.writestr(name, payload)
                    archive.writestr(MANIFEST_NAME, self._manifest(now, final_path.name, list(sources)))
                os.replace(partial_path, final_path)
            except OSError as exc:
                log.error("Backup to '%s' interrupted: %s", partial_path, exc)
                raise StorageIOError(f"Unable to write backup archive {final_path}: {exc}", path=final_path) from exc

            self._write_watermark(now)
            log.info("Created backup '%s' with %d table files", final_path.name, len(sources))
            self._discard_interrupted()
            self.prune(keep=final_path)
            return final_path

    def _read_sources(self) -> dict[str, bytes]:
        sources: dict[str, bytes] = {}
        for path in sorted(self.data_folder.glob("*.xlsx")):
            try:
                sources[path.name] = path.read_bytes()
            except OSError as exc:
                raise StorageIOError(f"Unable to read {path} for backup: {exc}", path=path) from exc
        return sources

    def _archive_path(self, moment: datetime) -> Path:
        # A repeated timestamp takes the next zero-padded sequence above every
        # name on disk for that stem; the newest one is never pruned, so a
        # freed name is never handed out again.
        stem = f"{ARCHIVE_PREFIX}{moment.strftime(ARCHIVE_TIME_FORMAT)}"
        pattern = re.compile(rf"^{re.escape(stem)}(?:_(\d+))?{re.escape(ARCHIVE_SUFFIX)}(?:{re.escape(PARTIAL_SUFFIX)})?$")
        sequences = [
            int(match.group(1) or 0)
            for match in (pattern.match(path.name) for path in self.backup_folder.iterdir())
            if match is not None
        ]
        if not sequences:
            return self.backup_folder / f"{stem}{ARCHIVE_SUFFIX}"
        sequence = max(sequences) + 1
        return self.backup_folder / f"{stem}_{sequence:0{SEQUENCE_WIDTH}d}{ARCHIVE_SUFFIX}"

    @staticmethod
    def _manifest(moment: datetime, archive_name: str, file_names: List[str]) -> str:
        lines = [
            f"Backup Date: {data_manager.format_timestamp(moment)}",
            f"Backup File: {archive_name}",
            "Files Included:",
        ]
        lines.extend(f"{MANIFEST_FILE_MARKER}{name}" for name in file_names)
        return "\n".join(lines) + "\n"

    def prune(self, keep: Optional[Path] = None) -> List[Path]:
        """Delete the oldest archives beyond ``max_backups``; return what was removed.

        ``keep`` names an archive that survives regardless of where it sorts.
        """

        archives = sorted(self.list_archives())
        if keep is not None and keep in archives:
            archives.remove(keep)
            archives.append(keep)
        excess = archives[: max(len(archives) - self.max_backups, 0)]
        for path in excess:
            try:
                path.unlink()
            except OSError as exc:
                raise StorageIOError(f"Unable to delete old backup {path}: {exc}", path=path) from exc
            log.info("Pruned old backup '%s'", path.name)
        return excess

    def _discard_interrupted(self) -> None:
        for path in self.list_interrupted():
            try:
                path.unlink()
            except OSError as exc:
                raise StorageIOError(f"Unable to delete interrupted backup {path}: {exc}", path=path) from exc
            log.info("Removed interrupted backup '%s'", path.name)

    # Inspection ---------------------------------------------------------

    def list_archives(self) -> List[Path]:
        """Finished archives, newest first (names sort chronologically)."""

        return sorted(self.backup_folder.glob(f"{ARCHIVE_PREFIX}*{ARCHIVE_SUFFIX}"), key=lambda p: p.name, reverse=True)

    def list_interrupted(self) -> List[Path]:
        """Archives left under their ``.partial`` name by an interrupted run."""

        return sorted(self.backup_folder.glob(f"{ARCHIVE_PREFIX}*{ARCHIVE_SUFFIX}{PARTIAL_SUFFIX}"))

    def get_info(self) -> BackupInfo:
        return BackupInfo(last_backup_at=self.last_backup_at(), archives=self.list_archives())


def verify_archive(path: Path) -> List[str]:
    """Check an archive's CRCs and that it holds every file its manifest lists.

    Returns:
        list[str]: Human-readable problems; empty when the archive is sound.

    Raises:
        StorageIOError: If ``path`` is missing or is not a zip archive.
    """

    path = Path(path)
    try:
        with zipfile.ZipFile(path) as archive:
            problems = []
            bad_member = archive.testzip()
            if bad_member is not None:
                problems.append(f"Corrupt member: {bad_member}")

            names = set(archive.namelist())
            if MANIFEST_NAME not in names:
                problems.append(f"Missing {MANIFEST_NAME}")
                return problems

            manifest = archive.read(MANIFEST_NAME).decode("utf-8")
    except (OSError, zipfile.BadZipFile, zlib.error) as exc:
        raise StorageIOError(f"Unable to open backup archive {path}: {exc}", path=path) from exc

    for line in manifest.splitlines():
        if line.startswith(MANIFEST_FILE_MARKER):
            listed = line[len(MANIFEST_FILE_MARKER):].strip()
            if listed not in names:
                problems.append(f"Missing file listed in manifest: {listed}")
    return problems
