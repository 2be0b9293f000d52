import os
import zipfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from logbook_cleaner import SCRIPT_START, BackupEntry, DeleteResult, RawEntry


def days_ago(days: float, now: datetime = SCRIPT_START) -> datetime:
    """Timestamp ``days`` old, shifted by one hour so the day count is never at a boundary."""
    return now - timedelta(days=days, hours=1)


def backup_name(log_id: str, timestamp: datetime, extension: str = "xml") -> str:
    return f"{log_id} backup {timestamp:%Y-%m-%d %H%M}.{extension}"


def make_backups(folder: Path, log_id: str, ages: list[float], extension: str = "xml") -> list[Path]:
    """Create one backup file per age (in days), mtime set accordingly."""
    files: list[Path] = []
    for age in ages:
        timestamp = days_ago(age)
        file = folder / backup_name(log_id, timestamp, extension)
        file.write_text(f"<backup age='{age}'/>")
        os.utime(file, (timestamp.timestamp(), timestamp.timestamp()))
        files.append(file)
    return files


def make_zip(path: Path, entries: dict[str, datetime]) -> Path:
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, timestamp in entries.items():
            info = zipfile.ZipInfo(name, date_time=timestamp.timetuple()[:6])
            info.compress_type = zipfile.ZIP_DEFLATED
            archive.writestr(info, f"<backup name='{name}'/>")
    return path


class MemorySource:
    """In-memory backup source, deletes fail for names listed in ``failing``."""

    def __init__(self, entries: list[RawEntry], extension: str = "xml", failing: Optional[set[str]] = None) -> None:
        self.extension = extension
        self.entries = list(entries)
        self.failing = failing or set()
        self.deleted: list[str] = []
        self.entered = 0
        self.exited = 0

    def __enter__(self) -> "MemorySource":
        self.entered += 1
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.exited += 1

    def describe(self) -> str:
        return "memory source"

    def list_entries(self) -> list[RawEntry]:
        return [e for e in self.entries if e.name not in self.deleted]

    def delete(self, entry: BackupEntry) -> DeleteResult:
        if entry.name in self.failing:
            return DeleteResult(entry, f"simulated failure for {entry.name}")
        self.deleted.append(entry.name)
        return DeleteResult(entry)


def memory_entries(log_id: str, ages: list[float], extension: str = "xml") -> list[RawEntry]:
    entries = []
    for age in ages:
        timestamp = days_ago(age)
        entries.append(RawEntry(backup_name(log_id, timestamp, extension), timestamp, None))
    return entries
