"""
Backfill Orchestrator
=====================

Replays every historical journal file, oldest first, in bulk mode.

Design:
- Single-flight: a second run while one is active returns already_running
- Cooperative cancellation, checked between files only
- Progress is a stream: iter_run() yields after each file, and every step
  is also emitted as a `backfill-progress` domain event
- Not transactional end to end; every write is an idempotent upsert, so a
  partial run is a safe place to resume from
"""

# ============================================================================
# MODULE OVERVIEW
# ============================================================================
# Purpose:
#   backfill.py
#
# Connected modules (direct imports):
#   config, errors, reconstructor, state, tailer
# ============================================================================

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Generator

from .config import MAX_BACKFILL_FILES
from .errors import FileSystemError
from .reconstructor import JournalReconstructor
from .state import EventEmitter, BACKFILL_PROGRESS
from .tailer import JournalTailer


logger = logging.getLogger("galnetops.backfill")


@dataclass(frozen=True)
class BackfillProgress:
    current: int
    total: int
    file: str


@dataclass(frozen=True)
class BackfillResult:
    files_processed: int = 0
    total_files: int = 0
    cancelled: bool = False
    already_running: bool = False
    skipped_files: int = 0

    def to_dict(self) -> dict:
        return {
            "filesProcessed": self.files_processed,
            "totalFiles": self.total_files,
            "cancelled": self.cancelled,
            "alreadyRunning": self.already_running,
            "skippedFiles": self.skipped_files,
        }


class BackfillOrchestrator:
    """
    Drives the reconstructor across all journal files.

    Usage:
        orchestrator = BackfillOrchestrator(tailer, reconstructor, emitter)
        for progress in orchestrator.iter_run():
            print(progress.current, progress.total, progress.file)
    """

    def __init__(
        self,
        tailer: JournalTailer,
        reconstructor: JournalReconstructor,
        emitter: Optional[EventEmitter] = None,
        max_files: int = MAX_BACKFILL_FILES,
    ):
        self.tailer = tailer
        self.reconstructor = reconstructor
        self.emitter = emitter or reconstructor.emitter
        self.max_files = max(1, min(int(max_files), MAX_BACKFILL_FILES))

        self._lock = threading.Lock()
        self._running = False
        self._cancel_event = threading.Event()

    def is_running(self) -> bool:
        return self._running

    def cancel(self) -> bool:
        """Request cancellation; honoured before the next file starts"""
        if not self._running:
            return False
        self._cancel_event.set()
        logger.info("Backfill cancellation requested")
        return True

    def run(self, journal_dir: Optional[Path] = None) -> BackfillResult:
        """Run to completion (or cancellation) and return the result"""
        steps = self.iter_run(journal_dir)
        while True:
            try:
                next(steps)
            except StopIteration as done:
                return done.value

    def iter_run(
        self,
        journal_dir: Optional[Path] = None,
    ) -> Generator[BackfillProgress, None, BackfillResult]:
        """
        Replay journals, yielding progress after each file

        The run counts as in progress from this call on, before the first
        step is taken. Closing the generator (or dropping it) ends the run.

        Args:
            journal_dir: Directory to backfill (defaults to the tailer's)

        Returns:
            Generator whose return value is the BackfillResult
        """
        with self._lock:
            if self._running:
                logger.warning("Backfill already in progress")
                return self._finished(BackfillResult(already_running=True))
            self._running = True
            self._cancel_event.clear()

        steps = self._iter_files(journal_dir)
        # Enter the try block now so close() releases the guard
        next(steps)
        return steps

    @staticmethod
    def _finished(result: BackfillResult) -> Generator[BackfillProgress, None, BackfillResult]:
        yield from ()
        return result

    def _iter_files(
        self,
        journal_dir: Optional[Path],
    ) -> Generator[Optional[BackfillProgress], None, BackfillResult]:
        try:
            yield None

            tailer = self.tailer
            if journal_dir is not None and Path(journal_dir) != tailer.journal_dir:
                tailer = JournalTailer(
                    journal_dir,
                    max_files=tailer.max_files,
                    max_lines_per_read=tailer.max_lines_per_read,
                )

            all_files = tailer.list_journals()
            files = all_files[:self.max_files]
            skipped = len(all_files) - len(files)
            if skipped:
                logger.warning(
                    "Found %d journal files; limiting backfill to %d",
                    len(all_files), self.max_files
                )

            total = len(files)
            processed = 0
            logger.info("Backfill starting: %d journal files", total)

            for index, path in enumerate(files, start=1):
                if self._cancel_event.is_set():
                    logger.info("Backfill cancelled after %d/%d files", processed, total)
                    return BackfillResult(
                        files_processed=processed,
                        total_files=total,
                        cancelled=True,
                        skipped_files=skipped,
                    )

                try:
                    result = tailer.read_all(path)
                except FileSystemError as e:
                    logger.warning("Backfill: skipping unreadable %s: %s", path.name, e)
                    skipped += 1
                    continue

                if result.capped:
                    logger.warning("Backfill: %s truncated at the line cap", path.name)
                self.reconstructor.replay_lines(result.lines, bulk=True)
                processed += 1

                progress = BackfillProgress(current=index, total=total, file=path.name)
                self.emitter.emit(BACKFILL_PROGRESS, {
                    "current": progress.current,
                    "total": progress.total,
                    "file": progress.file,
                })
                yield progress

            logger.info("Backfill complete: processed %d/%d files", processed, total)
            return BackfillResult(
                files_processed=processed,
                total_files=total,
                skipped_files=skipped,
            )
        finally:
            self._running = False
            self._cancel_event.clear()
