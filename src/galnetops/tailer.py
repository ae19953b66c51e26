"""
Journal Tailer
==============

File operations for the journal directory: discovery, newest-file lookup,
byte-offset tailing and rotation detection.

Benefits:
- Only complete lines are returned; a partial trailing line is re-read whole
- Truncated files restart from 0 instead of seeking past the end
- Directory and per-read caps are fixed upper bounds (WARNING when hit)
"""

# ============================================================================
# MODULE OVERVIEW
# ============================================================================
# Purpose:
#   tailer.py
#
# Connected modules (direct imports):
#   config, errors
#
# Notes:
#   - Offsets are byte offsets; decoding happens after the line split so a
#     multi-byte character is never cut in half.
#   - Journal names embed a sortable timestamp, so name order is
#     chronological order.
# ============================================================================

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List

from .config import MAX_FILES_IN_DIRECTORY, MAX_LINES_PER_FILE
from .errors import FileSystemError


logger = logging.getLogger("galnetops.tailer")

JOURNAL_PREFIX = "Journal."
JOURNAL_SUFFIX = ".log"


# ============================================================================
# RESULT TYPES
# ============================================================================

@dataclass(frozen=True)
class ReadResult:
    """Lines read from a journal and the offset to resume from"""
    lines: List[str] = field(default_factory=list)
    offset: int = 0
    truncated: bool = False
    capped: bool = False


@dataclass
class TailPosition:
    """The file being followed and the byte offset already consumed"""
    file: Optional[Path] = None
    offset: int = 0

    def reset(self, file: Optional[Path], offset: int = 0):
        self.file = file
        self.offset = offset


# ============================================================================
# JOURNAL TAILER
# ============================================================================

class JournalTailer:
    """Reads journal files in a directory by byte offset"""

    def __init__(
        self,
        journal_dir: Path,
        max_files: int = MAX_FILES_IN_DIRECTORY,
        max_lines_per_read: int = MAX_LINES_PER_FILE,
    ):
        """
        Initialize journal tailer

        Args:
            journal_dir: Directory containing journal files
            max_files: Cap on files considered (clamped to the built-in cap)
            max_lines_per_read: Cap on lines returned per read (clamped)
        """
        self.journal_dir = Path(journal_dir).expanduser()
        self.max_files = max(1, min(int(max_files), MAX_FILES_IN_DIRECTORY))
        self.max_lines_per_read = max(1, min(int(max_lines_per_read), MAX_LINES_PER_FILE))

    # ------------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------------
    @staticmethod
    def is_journal_name(name: str) -> bool:
        return name.startswith(JOURNAL_PREFIX) and name.endswith(JOURNAL_SUFFIX)

    def _journal_names(self) -> List[str]:
        """Every journal file name in the directory, sorted"""
        try:
            with os.scandir(self.journal_dir) as entries:
                return sorted(
                    entry.name for entry in entries
                    if entry.is_file() and self.is_journal_name(entry.name)
                )
        except FileNotFoundError:
            logger.debug("Journal directory does not exist: %s", self.journal_dir)
            return []
        except OSError as e:
            logger.warning("Cannot list journal directory %s: %s", self.journal_dir, e)
            return []

    def list_journals(self) -> List[Path]:
        """All journal files, oldest first (first `max_files` when over the cap)"""
        names = self._journal_names()
        if len(names) > self.max_files:
            logger.warning(
                "Journal directory has %d files; only the first %d are used",
                len(names), self.max_files
            )
            names = names[:self.max_files]

        return [self.journal_dir / name for name in names]

    def latest(self) -> Optional[Path]:
        """Newest journal file, or None; the file cap never hides it"""
        names = self._journal_names()
        return self.journal_dir / names[-1] if names else None

    def detect_rotation(self, position: TailPosition) -> Optional[Path]:
        """Return the newest journal when it differs from the tracked one"""
        newest = self.latest()
        if newest is not None and newest != position.file:
            return newest
        return None

    @staticmethod
    def file_size(path: Path) -> int:
        try:
            return Path(path).stat().st_size
        except OSError:
            return 0

    # ------------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------------
    def read_since(self, path: Path, offset: int) -> ReadResult:
        """
        Read complete lines appended after `offset`

        Args:
            path: Journal file
            offset: Byte offset already consumed

        Returns:
            ReadResult; `offset` points just past the last returned line

        Raises:
            FileSystemError: The file cannot be read
        """
        path = Path(path)
        truncated = False
        try:
            size = path.stat().st_size
            if size < offset:
                logger.warning("%s shrank below offset %d; reading from start", path.name, offset)
                offset = 0
                truncated = True
            if size == offset:
                return ReadResult(lines=[], offset=offset, truncated=truncated)

            with path.open("rb") as f:
                f.seek(offset)
                data = f.read(size - offset)
        except OSError as e:
            raise FileSystemError(
                f"Cannot read journal {path}: {e}",
                context={"path": str(path), "offset": offset}
            ) from e

        end = data.rfind(b"\n")
        if end < 0:
            # Nothing but a partial line so far
            return ReadResult(lines=[], offset=offset, truncated=truncated)

        raw_lines = data[:end + 1].split(b"\n")[:-1]
        capped = False
        if len(raw_lines) > self.max_lines_per_read:
            logger.warning(
                "%s: %d new lines exceed the per-read cap; returning the first %d",
                path.name, len(raw_lines), self.max_lines_per_read
            )
            raw_lines = raw_lines[:self.max_lines_per_read]
            capped = True

        consumed = sum(len(raw) + 1 for raw in raw_lines)
        lines = [raw.decode("utf-8", errors="replace").rstrip("\r") for raw in raw_lines]
        return ReadResult(
            lines=lines,
            offset=offset + consumed,
            truncated=truncated,
            capped=capped,
        )

    def read_all(self, path: Path) -> ReadResult:
        """Complete lines from the start of the file"""
        return self.read_since(path, 0)
