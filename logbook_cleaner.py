#
# logbook-cleaner
#
# A small CLI tool to apply age and count based retention rules to logbook backups in folders and zip archives.
#
# Copyright (c) 2025-2026 Thomas Kuhlmann
#
# Licensed under the MIT License. See LICENSE file in the project root for license information.
#

import argparse
import os
import re
import shutil
import sys
import tempfile
import traceback
import zipfile
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from pathlib import Path, PurePosixPath
from types import SimpleNamespace, TracebackType
from typing import Any, NamedTuple, NoReturn, Optional, Protocol, TextIO, no_type_check


VERSION: str = "dev-1.0.0"

SCRIPT_START = datetime.now()

BACKUP_MARKER: str = " backup"

FOLDER_EXTENSIONS: tuple[str, ...] = ("xml", "zip")

ZIP_ENTRY_EXTENSION: str = "xml"


class SourceError(Exception):
    pass


class IntegrityCheckFailedError(Exception):
    pass


class ConfigNamespace(SimpleNamespace):
    pass


class LogLevel(IntEnum):
    ERROR = 0
    WARN = 1
    INFO = 2
    DEBUG = 3

    @classmethod
    def from_name_or_number(cls, prefix: str) -> "LogLevel":
        try:
            return next(m for m in cls if m.name.startswith(prefix.upper()))
        except StopIteration:
            try:
                return cls(int(prefix))
            except ValueError:
                raise ValueError("Invalid log level: " + prefix)


@dataclass(frozen=True)
class RetentionConfig:
    age_days: int = 0
    min_count: int = 0
    dry_run: bool = False


@dataclass(frozen=True)
class BackupEntry:
    name: str
    log_id: str
    timestamp: datetime
    handle: Any = field(compare=False)


@dataclass
class LogGroup:
    log_id: str
    entries: list[BackupEntry]


@dataclass(frozen=True)
class GroupOutcome:
    log_id: str
    deleted: int
    retained: int
    had_errors: bool = False

    @property
    def total(self) -> int:
        return self.deleted + self.retained


@dataclass(frozen=True)
class DeleteResult:
    entry: BackupEntry
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RawEntry(NamedTuple):
    name: str
    timestamp: datetime
    handle: Any


class Logger:
    """Console reporter for the cleanup run.

    Levelled diagnostics go to stderr, gated by ``verbose``. Progress lines go to stdout unless ``quiet``.
    Errors are always printed.
    """

    _verbose: LogLevel
    _quiet: bool

    def __init__(self, verbose: LogLevel = LogLevel.WARN, quiet: bool = False) -> None:
        self._verbose = verbose
        self._quiet = quiet

    def has_log_level(self, level: LogLevel) -> bool:
        return level <= int(self._verbose)

    def _raw_verbose(self, level: LogLevel, message: str, file: Optional[TextIO] = None, prefix: str = "") -> None:
        print(f"[{prefix or LogLevel(level).name}] {message}", file=file or sys.stderr)

    def verbose(self, level: LogLevel, message: str, file: Optional[TextIO] = None, prefix: str = "") -> None:
        if self.has_log_level(level):
            self._raw_verbose(level, message, file, prefix)

    def display(self, message: str) -> None:
        if not self._quiet:
            print(message, file=sys.stdout)

    def error(self, message: str) -> None:
        self._raw_verbose(LogLevel.ERROR, message)

    def group_summary(self, outcome: GroupOutcome) -> None:
        if outcome.had_errors:
            self.display(f"Errors occurred while removing files for log {outcome.log_id} (Deleted:{outcome.deleted} Retained:{outcome.retained}). Review any error messages for more information")
        else:
            self.display(f"Summary for log {outcome.log_id}: Deleted:{outcome.deleted} Retained:{outcome.retained}")


# Retention policy


def is_eligible_for_deletion(file_time: datetime, remaining: int, config: RetentionConfig, now: Optional[datetime] = None) -> bool:
    if remaining <= config.min_count:
        return False  # Retention floor wins over any age
    if config.age_days > 0:
        return ((now or SCRIPT_START) - file_time).days > config.age_days
    return True


# Grouping


def backup_name_pattern(extension: str) -> re.Pattern[str]:
    return re.compile(rf".*{re.escape(BACKUP_MARKER)} \d{{4}}-\d{{2}}-\d{{2}} \d{{4}}\.(?i:{re.escape(extension)})")


def has_extension(name: str, extension: str) -> bool:
    return name.casefold().endswith(f".{extension}".casefold())


def log_id_of(name: str) -> Optional[str]:
    idx = name.find(BACKUP_MARKER)
    return name[:idx] if idx >= 0 else None


def sort_entries(entries: Iterable[BackupEntry]) -> list[BackupEntry]:
    return sorted(entries, key=lambda entry: (entry.timestamp, entry.name))


def group_backups(raw_entries: Iterable[RawEntry], extension: str) -> list[LogGroup]:
    """Group raw entries by log id, oldest first within each group.

    Names not following ``<logId> backup YYYY-MM-DD HHMM.<extension>`` are ignored. The log id is everything
    in front of the first `` backup`` marker, so it is taken from the name before any filtering happens.
    """
    pattern = backup_name_pattern(extension)
    buckets: dict[str, list[BackupEntry]] = defaultdict(list)
    for raw in raw_entries:
        log_id = log_id_of(raw.name)
        if log_id is None or not pattern.fullmatch(raw.name):
            continue
        buckets[log_id].append(BackupEntry(raw.name, log_id, raw.timestamp, raw.handle))
    return [LogGroup(log_id, sort_entries(buckets[log_id])) for log_id in sorted(buckets)]


# Sources


class BackupSource(Protocol):
    extension: str

    def __enter__(self) -> "BackupSource": ...

    def __exit__(self, exc_type: Optional[type[BaseException]], exc: Optional[BaseException], tb: Optional[TracebackType]) -> None: ...

    def describe(self) -> str: ...

    def list_entries(self) -> list[RawEntry]: ...

    def delete(self, entry: BackupEntry) -> DeleteResult: ...


class FolderSource:
    path: Path
    extension: str
    dry_run: bool
    age_type: str

    def __init__(self, path: Path, extension: str, dry_run: bool = False, age_type: str = "mtime") -> None:
        self.path = Path(path)
        self.extension = extension
        self.dry_run = dry_run
        self.age_type = age_type

    def __enter__(self) -> "FolderSource":
        if not self.path.exists():
            raise FileNotFoundError(f"Folder {self.path} could not be found")
        if not self.path.is_dir():
            raise NotADirectoryError(f"Path is not a folder: {self.path}")
        return self

    def __exit__(self, exc_type: Optional[type[BaseException]], exc: Optional[BaseException], tb: Optional[TracebackType]) -> None:
        pass

    def describe(self) -> str:
        return f"{self.extension.upper()} backup files in folder {self.path}"

    def _file_time(self, file: Path) -> datetime:
        return datetime.fromtimestamp(getattr(file.stat(), f"st_{self.age_type}"))

    def list_entries(self) -> list[RawEntry]:
        return [RawEntry(file.name, self._file_time(file), file) for file in self.path.iterdir() if file.is_file() and has_extension(file.name, self.extension)]

    def delete(self, entry: BackupEntry) -> DeleteResult:
        if self.dry_run:
            return DeleteResult(entry)
        try:
            entry.handle.unlink()
        except PermissionError:
            return DeleteResult(entry, f"You don't have the required permissions to delete {entry.name}")
        except OSError as e:
            return DeleteResult(entry, f"An error occurred deleting file {entry.name}: {e}")
        return DeleteResult(entry)


class ZipArchiveSource:
    """Backup entries stored inside one zip archive.

    ``zipfile`` cannot remove members, so deletions only update the pending index and the archive is rewritten
    on a clean exit. The original file is replaced atomically and left untouched if rewriting fails.

    Pending removals are keyed by the member's header offset, as an archive may hold several members with the
    same name.
    """

    path: Path
    extension: str
    dry_run: bool
    _logger: Logger
    _archive: Optional[zipfile.ZipFile]
    _removed: set[int]

    def __init__(self, path: Path, dry_run: bool = False, logger: Optional[Logger] = None) -> None:
        self.path = Path(path)
        self.extension = ZIP_ENTRY_EXTENSION
        self.dry_run = dry_run
        self._logger = logger or Logger()
        self._archive = None
        self._removed = set()

    def __enter__(self) -> "ZipArchiveSource":
        if not self.path.is_file():
            raise FileNotFoundError(f"Zip file {self.path} could not be found")
        self._archive = zipfile.ZipFile(self.path, "r")
        self._removed = set()
        return self

    def __exit__(self, exc_type: Optional[type[BaseException]], exc: Optional[BaseException], tb: Optional[TracebackType]) -> None:
        try:
            if exc_type is None and self._removed:
                self._rewrite_archive()
        finally:
            if self._archive is not None:
                self._archive.close()
            self._archive = None
            self._removed = set()

    @property
    def archive(self) -> zipfile.ZipFile:
        if self._archive is None:
            raise SourceError(f"Zip file {self.path} is not open")
        return self._archive

    def describe(self) -> str:
        return f"XML backup entries in zip file {self.path}"

    def list_entries(self) -> list[RawEntry]:
        entries: list[RawEntry] = []
        for info in self.archive.infolist():
            name = PurePosixPath(info.filename).name
            if info.is_dir() or not has_extension(name, self.extension):
                continue
            try:
                timestamp = datetime(*info.date_time)
            except ValueError as e:
                self._logger.verbose(LogLevel.WARN, f"Skipping entry '{info.filename}' in {self.path.name}: invalid timestamp {info.date_time} ({e})")
                continue
            entries.append(RawEntry(name, timestamp, info))
        return entries

    def delete(self, entry: BackupEntry) -> DeleteResult:
        info: zipfile.ZipInfo = entry.handle
        if not any(member is info for member in self.archive.infolist()):
            return DeleteResult(entry, f"An error occurred deleting entry {entry.name}: not found in {self.path.name}")
        if info.header_offset in self._removed:
            return DeleteResult(entry, f"An error occurred deleting entry {entry.name}: already removed from {self.path.name}")
        if not self.dry_run:
            self._removed.add(info.header_offset)
        return DeleteResult(entry)

    def _rewrite_archive(self) -> None:
        fd, temp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        os.close(fd)
        temp_path = Path(temp_name)
        try:
            with zipfile.ZipFile(temp_path, "w") as target:
                target.comment = self.archive.comment
                for info in self.archive.infolist():
                    if info.header_offset in self._removed:
                        continue
                    member = zipfile.ZipInfo(info.filename, date_time=info.date_time)
                    member.compress_type = info.compress_type
                    member.external_attr = info.external_attr
                    member.comment = info.comment
                    member.file_size = info.file_size  # zip64 decision
                    with self.archive.open(info) as src, target.open(member, "w") as dst:
                        shutil.copyfileobj(src, dst)
            self.archive.close()
            os.replace(temp_path, self.path)
        except (OSError, zipfile.BadZipFile) as e:
            temp_path.unlink(missing_ok=True)
            raise SourceError(f"Changes to {self.path} were not saved, an error occurred writing the archive: {e}") from e


def create_sources(folders: Iterable[str], zipfiles: Iterable[str], dry_run: bool, age_type: str = "mtime", logger: Optional[Logger] = None) -> list[BackupSource]:
    sources: list[BackupSource] = []
    for folder in folders:
        sources.extend(FolderSource(Path(folder), extension, dry_run, age_type) for extension in FOLDER_EXTENSIONS)
    sources.extend(ZipArchiveSource(Path(zip_file), dry_run, logger) for zip_file in zipfiles)
    return sources


# Runner


class CleanupRunner:
    _config: RetentionConfig
    _logger: Logger
    _now: datetime

    def __init__(self, config: RetentionConfig, logger: Logger, now: Optional[datetime] = None) -> None:
        self._config = config
        self._logger = logger
        self._now = now or SCRIPT_START

    def _log_decision(self, entry: BackupEntry, remaining: int) -> None:
        if not self._logger.has_log_level(LogLevel.DEBUG):
            return
        if remaining <= self._config.min_count:
            self._logger.verbose(LogLevel.DEBUG, f"Must leave at least {self._config.min_count} files remaining, '{entry.name}' will not be deleted")
        elif self._config.age_days > 0:
            age = (self._now - entry.timestamp).days
            marked = "exceeds age, marking for deletion" if age > self._config.age_days else "not marked for deletion based on age"
            self._logger.verbose(LogLevel.DEBUG, f"'{entry.name}' is {age} days old, {marked}")

    def process_group(self, source: BackupSource, group: LogGroup) -> GroupOutcome:
        self._logger.display(f"Processing backups for log {group.log_id} with {len(group.entries)} entries")
        remaining = len(group.entries)
        deleted = 0
        had_errors = False

        for entry in group.entries:  # Oldest first, so the floor protects the newest entries
            self._logger.verbose(LogLevel.INFO, f"Processing '{entry.name}'")
            self._log_decision(entry, remaining)
            if not is_eligible_for_deletion(entry.timestamp, remaining, self._config, self._now):
                continue

            self._logger.verbose(LogLevel.INFO, f"{'DRY-RUN DELETE' if self._config.dry_run else 'DELETING'}: {entry.name} ({entry.timestamp})")
            result = source.delete(entry)
            if result.ok:
                remaining -= 1
                deleted += 1
            else:
                had_errors = True
                self._logger.error(str(result.error))

        outcome = GroupOutcome(group.log_id, deleted, remaining, had_errors)
        if outcome.total != len(group.entries):
            raise IntegrityCheckFailedError(f"Entry count mismatch for log {group.log_id} (all: {len(group.entries)}, deleted: {deleted}, retained: {remaining})!!")
        return outcome

    def process_source(self, source: BackupSource) -> list[GroupOutcome]:
        self._logger.display(f"Processing {source.describe()}")
        with source:
            groups = group_backups(source.list_entries(), source.extension)
            self._logger.display(f"This source contains backups for {len(groups)} logs")
            outcomes = [self.process_group(source, group) for group in groups]
        # Summaries only once the source is closed, a zip archive is persisted on close
        for outcome in outcomes:
            self._logger.group_summary(outcome)
        return outcomes

    def run(self, sources: Iterable[BackupSource]) -> list[GroupOutcome]:
        outcomes: list[GroupOutcome] = []
        for source in sources:
            try:
                outcomes.extend(self.process_source(source))
            except (OSError, zipfile.BadZipFile, SourceError) as e:  # Only this source is affected
                self._logger.error(f"An error occurred while processing {source.describe()}: {e}")
        return outcomes


# Command line


class ModernHelpFormatter(argparse.HelpFormatter):
    @no_type_check
    def __init__(self, *a, **kw) -> None:  # noqa: ANN002, ANN003
        super().__init__(*a, max_help_position=30, width=160, **kw)

    @no_type_check
    def start_section(self, heading) -> None:  # noqa: ANN001
        super().start_section(heading.capitalize())


class ModernStrictArgumentParser(argparse.ArgumentParser):
    @no_type_check
    def __init__(self, *a, **kw) -> None:  # noqa: ANN002, ANN003
        super().__init__(*a, **kw)
        self._errors: list[str] = []

    def add_error(self, msg: str) -> None:
        if msg not in self._errors:
            self._errors.append(msg)

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        print("\nError(s):", file=sys.stderr)
        for line in message.split("\n"):
            print(f"  • {line}", file=sys.stderr)
        print("\nHint: Try '--help' for more information.", file=sys.stderr)
        sys.exit(2)

    # Argument type helpers
    def non_negative_int_argument(self, value: str) -> int:
        try:
            int_value = int(value)
            if int_value < 0:
                raise ValueError
        except ValueError:
            raise argparse.ArgumentTypeError(f"Invalid value '{value}': must be an integer >= 0")
        return int_value

    def verbose_argument(self, value: str) -> LogLevel:
        try:
            return LogLevel.from_name_or_number(value)
        except ValueError:
            raise argparse.ArgumentTypeError(f"Invalid verbose value '{value}' (use ERROR, WARN, INFO, DEBUG or 0, 1, 2, 3)")

    # Internal helper methods
    def _suggest(self, argument: str) -> list[str]:
        opts = [o for a in self._actions for o in a.option_strings if o.startswith("--")]
        cand = [o for o in opts if abs(len(o) - len(argument)) <= 2 and sum(a != b for a, b in zip(o, argument)) <= 2]
        return cand[:1]

    @no_type_check
    def _collect_raw_args(self, args):  # noqa: ANN202, ANN001
        if args is not None:
            return list(args)
        return sys.argv[1:]

    @no_type_check
    def _detect_duplicate_flags(self, raw_args) -> None:  # noqa: ANN001
        alias = {opt: action.option_strings[0] for action in self._actions for opt in action.option_strings}
        seen = set()

        for tok in raw_args:
            if not tok.startswith("-") or tok == "-":
                continue

            # -c3, -c=3, --count=3
            opt = tok.split("=", 1)[0]
            if len(opt) > 2 and not opt.startswith("--"):
                opt = opt[:2]

            key = alias.get(opt, opt)
            if key in seen:
                self.add_error(f"Duplicate flag: {key}")
            seen.add(key)

    @no_type_check
    def _validate_arguments(self, ns) -> None:  # noqa: ANN001
        if ns.verbose is None:
            ns.verbose = LogLevel.WARN

        if ns.age is None and ns.count is None:
            self.add_error("You must specify either age (-a), count (-c), or both")
        elif not ns.age and not ns.count:
            self.add_error("Age (-a) and count (-c) must not both be 0, this would delete every backup")

        if not ns.folders and not ns.zipfiles:
            self.add_error("You must specify either folders (-f), zipfiles (-z), or both")

        ns.age = ns.age or 0
        ns.count = ns.count or 0
        ns.folders = ns.folders or []
        ns.zipfiles = ns.zipfiles or []

    # Main hook
    @no_type_check
    def parse_known_args(self, args=None, namespace=None) -> tuple[argparse.Namespace, list[str]]:  # noqa: ANN001
        self._errors = []
        raw_args = self._collect_raw_args(args)
        self._detect_duplicate_flags(raw_args)

        ns, unknown = super().parse_known_args(raw_args, namespace or argparse.Namespace())

        if unknown:
            sug = self._suggest(unknown[0])
            if sug:
                self.add_error(f"Unknown option: {unknown[0]} (did you mean {sug[0]}?)")
            else:
                self.add_error(f"Unknown option: {unknown[0]}")

        self._validate_arguments(ns)

        if self._errors:
            self.error("\n".join(self._errors))

        return ns, unknown


def create_parser() -> ModernStrictArgumentParser:
    parser: ModernStrictArgumentParser = ModernStrictArgumentParser(
        prog="logbook-cleaner",
        description=f"logbook-cleaner {VERSION}\n\nClean up logbook backup files by age and/or count",
        usage="logbook-cleaner [-f DIR ...] [-z ZIP ...] [-a N] [-c N] [options]\n\nExample:\n  logbook-cleaner -f /data/backups -z /data/archive.zip -a 30 -c 5",
        epilog="Use with caution!! This tool deletes files unless --test is set.",
        formatter_class=ModernHelpFormatter,
        add_help=False,
    )

    g_main = parser.add_argument_group("Source arguments")
    g_ret = parser.add_argument_group("Retention arguments")
    g_behavior = parser.add_argument_group("Behavior arguments")
    g_common = parser.add_argument_group("Common arguments")

    g_main.add_argument("--folders", "-f", nargs="+", metavar="DIR", help="A list of backup folders containing XML or ZIP backup files")
    g_main.add_argument("--zipfiles", "-z", nargs="+", metavar="ZIP", help="A list of zip archives each containing multiple XML backups")

    g_ret.add_argument("--age", "-a", type=parser.non_negative_int_argument, metavar="N", help="Age in days. Backups older than this will be purged (0 = no age limit)")
    g_ret.add_argument("--count", "-c", type=parser.non_negative_int_argument, metavar="N", help="Count of backups to retain per log, regardless of their age")

    # fmt: off
    g_behavior.add_argument("--test", "-t", "--dry-run", "-X", action="store_true", dest="dry_run", help="Test changes but don't actually delete any files")
    g_behavior.add_argument("--quiet", "-q", action="store_true", help="Don't display progress messages on the console (errors are still shown)")
    g_behavior.add_argument("--verbose", "-V", "-v", "--debug", "-d", type=parser.verbose_argument, default=None, nargs="?", const=LogLevel.INFO, metavar="lev",
        help="Verbosity level: 0 = error, 1 = warn, 2 = info, 3 = debug (default: 'info', if specified without value; 'warn' otherwise; use numbers or names)")
    g_behavior.add_argument("--age-type", type=str, choices=["ctime", "mtime", "atime"], metavar="time", default="mtime", help="Used time attribute for the age of folder backups (default: mtime)")
    # fmt: on

    g_common.add_argument("--version", "-R", action="version", version=f"%(prog)s {VERSION}")
    g_common.add_argument("--help", "-h", action="help", help="Show this help message and exit")
    g_common.add_argument("--stacktrace", action="store_true", help=argparse.SUPPRESS)

    return parser


def parse_arguments(argv: Optional[list[str]] = None) -> ConfigNamespace:
    parser = create_parser()
    args = parser.parse_args(argv)
    return ConfigNamespace(**vars(args))


def handle_exception(exception: Exception, exit_code: int, stacktrace: bool, prefix: str = "") -> None:
    if stacktrace:
        traceback.print_exc()
    print(f"[{prefix or LogLevel.ERROR.name}] {exception}", file=sys.stderr)
    sys.exit(exit_code)


def main() -> None:
    args: Optional[ConfigNamespace] = None

    try:
        args = parse_arguments()

        logger = Logger(args.verbose, args.quiet)
        logger.verbose(LogLevel.DEBUG, f"Parsed arguments: {args}")

        config = RetentionConfig(age_days=args.age, min_count=args.count, dry_run=args.dry_run)
        if config.age_days > 0:
            logger.verbose(LogLevel.INFO, f"Processing files older than {config.age_days} days")
        if config.min_count > 0:
            logger.verbose(LogLevel.INFO, f"Processing files with file count greater than {config.min_count}")

        logger.display("Starting cleanup" + (" (test mode, nothing will be deleted)" if config.dry_run else ""))
        sources = create_sources(args.folders, args.zipfiles, config.dry_run, args.age_type, logger)
        outcomes = CleanupRunner(config, logger).run(sources)

        logger.verbose(LogLevel.INFO, f"Total logs processed: {len(outcomes):03d}")
        logger.verbose(LogLevel.INFO, f"Total backups deleted: {sum(o.deleted for o in outcomes):03d}")
        logger.verbose(LogLevel.INFO, f"Total backups retained: {sum(o.retained for o in outcomes):03d}")
        logger.display("Cleanup complete")

    except OSError as e:
        handle_exception(e, 1, args.stacktrace if args is not None else True)
    except ValueError as e:
        handle_exception(e, 2, args.stacktrace if args is not None else True)
    except IntegrityCheckFailedError as e:
        handle_exception(e, 7, args.stacktrace if args is not None else True)
    except Exception as e:
        handle_exception(e, 9, args.stacktrace if args is not None else True, prefix="UNEXPECTED ERROR")


if __name__ == "__main__":
    main()
