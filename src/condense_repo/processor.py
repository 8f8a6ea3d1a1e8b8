"""Concurrent file ingestion.

A scan goes through `IDLE -> COLLECTING -> PROCESSING -> DONE`:

- collection walks the tree, sequentially or with several collector threads
  sharing a directory queue, and fills a flat queue of eligible files;
- processing drains that queue with `min(threads, len(queue))` worker
  threads. When a worker thread cannot be started, the calling thread drains
  the queue itself with the same per-file function.

The file queue, the directory queue, the results and the progress counters
each have their own lock; no file is read while a lock is held.
"""

from __future__ import annotations

import os
import threading
from collections import deque
from enum import StrEnum, auto
from pathlib import Path
from typing import TYPE_CHECKING

from condense_repo.config import FileRecord, ProgressInfo
from condense_repo.exceptions import CondenseRepoError, FileProcessingError, InvalidRepositoryError
from condense_repo.file_manipulation import (
    MAX_FILE_SIZE,
    MMAP_THRESHOLD,
    count_lines,
    is_binary,
    is_readme_file,
    is_regular_file,
    read_buffered,
    read_mapped,
    relpath,
)
from condense_repo.logging import logger
from condense_repo.patterns import PatternMatcher
from condense_repo.settings import SummarizationOptions
from condense_repo.summarizer import Summarizer

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from condense_repo.ner import EntityExtractor
    from condense_repo.progress import ProgressTracker

    ProgressCallback = Callable[[ProgressInfo], None]

COLLECT_BATCH_SIZE = 64


class ScanState(StrEnum):
    """Phase of the current scan."""

    IDLE = auto()
    COLLECTING = auto()
    PROCESSING = auto()
    DONE = auto()


class FileProcessor:
    """Reads the eligible files of a repository into `FileRecord`s.

    An instance runs one scan at a time.
    """

    def __init__(
        self,
        matcher: PatternMatcher | None = None,
        *,
        threads: int | None = None,
        options: SummarizationOptions | None = None,
        tracker: ProgressTracker | None = None,
        extractor: EntityExtractor | None = None,
        mmap_threshold: int = MMAP_THRESHOLD,
        max_file_size: int = MAX_FILE_SIZE,
    ) -> None:
        """Create a processor.

        Args:
            matcher (PatternMatcher | None): eligibility rules, default ignores when None
            threads (int | None): worker count, the CPU count when None
            options (SummarizationOptions | None): summarization options, defaults when None
            tracker (ProgressTracker | None): job registry receiving progress snapshots
            extractor (EntityExtractor | None): entity extractor used by the summarizer
            mmap_threshold (int): files above this size are read through a memory map
            max_file_size (int): files above this size are skipped unread
        """
        self.matcher = matcher or PatternMatcher()
        self.threads = max(1, threads or os.cpu_count() or 4)
        self.options = options or SummarizationOptions()
        self.tracker = tracker
        self.mmap_threshold = mmap_threshold
        self.max_file_size = max_file_size
        self._extractor = extractor
        self._summarizer = Summarizer(self.options, extractor)
        self._summarizers: dict[SummarizationOptions, Summarizer] = {}
        self._summarizers_lock = threading.Lock()

        self._state = ScanState.IDLE
        self._root: Path | None = None
        self._job_id: str | None = None

        self._queue_lock = threading.Lock()
        self._file_queue: deque[Path] = deque()

        self._dir_cond = threading.Condition()
        self._dir_queue: deque[Path] = deque()
        self._pending_dirs = 0

        self._results_lock = threading.Lock()
        self._results: list[FileRecord] = []

        self._progress_lock = threading.Lock()
        self._progress = ProgressInfo()
        self._callback: ProgressCallback | None = None

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def job_id(self) -> str | None:
        """Id of the tracker job of the last scan, if a tracker was given."""
        return self._job_id

    def set_progress_callback(self, callback: ProgressCallback | None) -> None:
        """Register a function called synchronously with every progress snapshot."""
        self._callback = callback

    def current_progress(self) -> ProgressInfo:
        with self._progress_lock:
            return self._progress

    # Collection

    def process_directory(self, root: Path, *, parallel: bool = False) -> list[FileRecord]:
        """Read every eligible file below a root.

        Args:
            root (Path): the repository root
            parallel (bool): collect with several walker threads

        Raises:
            InvalidRepositoryError: if root is missing or not a directory

        Returns:
            list[FileRecord]: one record per eligible file, in completion order
        """
        if not root.is_dir():
            raise InvalidRepositoryError(folder=root)
        self._root = root.resolve()
        self._state = ScanState.COLLECTING
        logger.info("Collecting files under %s (parallel=%s)", self._root, parallel)
        files = self.collect_parallel(self._root) if parallel else self.collect(self._root)
        return self._run(files)

    def process_files(self, paths: Iterable[Path], root: Path) -> list[FileRecord]:
        """Read an already selected list of files.

        Args:
            paths (Iterable[Path]): the files, absolute or relative to root
            root (Path): the repository root used for relative paths

        Raises:
            InvalidRepositoryError: if root is missing or not a directory

        Returns:
            list[FileRecord]: one record per file
        """
        if not root.is_dir():
            raise InvalidRepositoryError(folder=root)
        self._root = root.resolve()
        self._state = ScanState.COLLECTING
        files = [p if p.is_absolute() else self._root / p for p in paths]
        return self._run(files)

    def collect(self, root: Path) -> list[Path]:
        """Walk the tree on the calling thread and list the eligible files.

        Args:
            root (Path): resolved repository root

        Returns:
            list[Path]: eligible files sorted by relative path
        """
        found: list[Path] = []
        for dirpath, dirs, files in os.walk(root, onerror=self._walk_error):
            base = Path(dirpath)
            dirs[:] = [d for d in dirs if not self.matcher.is_dir_ignored(relpath(base / d, root))]
            found.extend(
                base / f
                for f in files
                if self.matcher.should_process(relpath(base / f, root)) and (base / f).is_file()
            )
        return sorted(found, key=lambda p: relpath(p, root))

    def collect_parallel(self, root: Path) -> list[Path]:
        """Walk the tree with several collector threads.

        Collectors pop directories from a shared queue, push the
        subdirectories they find back onto it and publish eligible files in
        batches. The result equals `collect(root)`.

        Args:
            root (Path): resolved repository root

        Returns:
            list[Path]: eligible files sorted by relative path
        """
        with self._dir_cond:
            self._dir_queue = deque([root])
            self._pending_dirs = 1
        with self._queue_lock:
            self._file_queue.clear()

        workers = self._start_threads(self.threads, self._collect_worker, root, "collector")
        if len(workers) < self.threads:
            self._collect_worker(root)
        for t in workers:
            t.join()

        with self._queue_lock:
            found = list(self._file_queue)
            self._file_queue.clear()
        return sorted(found, key=lambda p: relpath(p, root))

    def _collect_worker(self, root: Path) -> None:
        while True:
            with self._dir_cond:
                while not self._dir_queue and self._pending_dirs > 0:
                    self._dir_cond.wait()
                if not self._dir_queue:
                    return
                current = self._dir_queue.popleft()

            subdirs: list[Path] = []
            try:
                subdirs = self._scan_dir(current, root)
            finally:
                with self._dir_cond:
                    self._dir_queue.extend(subdirs)
                    self._pending_dirs += len(subdirs) - 1
                    self._dir_cond.notify_all()

    def _scan_dir(self, current: Path, root: Path) -> list[Path]:
        subdirs: list[Path] = []
        batch: list[Path] = []
        try:
            with os.scandir(current) as it:
                for entry in it:
                    path = Path(entry.path)
                    rel = relpath(path, root)
                    if entry.is_dir(follow_symlinks=False):
                        if not self.matcher.is_dir_ignored(rel):
                            subdirs.append(path)
                    elif entry.is_file() and self.matcher.should_process(rel):
                        batch.append(path)
                        if len(batch) >= COLLECT_BATCH_SIZE:
                            self._push_files(batch)
                            batch = []
        except OSError as e:
            self._walk_error(e)
        if batch:
            self._push_files(batch)
        return subdirs

    def _push_files(self, batch: list[Path]) -> None:
        with self._queue_lock:
            self._file_queue.extend(batch)

    @staticmethod
    def _walk_error(error: OSError) -> None:
        logger.warning("Cannot list directory %s: %s", error.filename, error.strerror)

    # Processing

    def _run(self, files: list[Path]) -> list[FileRecord]:
        with self._queue_lock:
            self._file_queue = deque(files)
        with self._results_lock:
            self._results = []
        with self._progress_lock:
            self._progress = ProgressInfo(total_files=len(files))
        if self.tracker is not None:
            self._job_id = self.tracker.register_job()

        self._state = ScanState.PROCESSING
        count = min(self.threads, len(files))
        logger.info("Processing %d files with %d workers", len(files), count)
        workers = self._start_threads(count, self._drain, None, "worker")
        if len(workers) < count:
            self._drain(None)
        for t in workers:
            t.join()

        with self._progress_lock:
            self._progress = self._progress.model_copy(update={"is_complete": True, "current_file": ""})
            final = self._progress
        self._publish(final)
        self._state = ScanState.DONE
        logger.info(
            "Scan complete: %d processed, %d skipped, %d errors",
            final.processed_files,
            final.skipped_files,
            final.error_files,
        )
        with self._results_lock:
            return list(self._results)

    def _start_threads(
        self,
        count: int,
        target: Callable[[Path | None], None],
        arg: Path | None,
        role: str,
    ) -> list[threading.Thread]:
        started: list[threading.Thread] = []
        for i in range(count):
            t = threading.Thread(target=target, args=(arg,), name=f"condense-{role}-{i}", daemon=True)
            try:
                t.start()
            except RuntimeError as e:
                logger.warning(
                    "Could not start %s thread %d of %d, draining on the calling thread: %s",
                    role,
                    i + 1,
                    count,
                    e,
                )
                break
            started.append(t)
        return started

    def _drain(self, _unused: Path | None = None) -> None:
        while True:
            with self._queue_lock:
                if not self._file_queue:
                    return
                path = self._file_queue.popleft()
            record = self._process_one(path)
            with self._results_lock:
                self._results.append(record)
            self._record_progress(record)

    def _process_one(self, path: Path) -> FileRecord:
        try:
            return self.process_file(path)
        except (CondenseRepoError, OSError, ValueError) as e:
            reason = getattr(e, "reason", None) or str(e)
            logger.warning("Failed to process %s: %s", path, reason)
            return FileRecord(path=path, rel=self._rel(path), error=reason)

    def _rel(self, path: Path) -> str:
        return relpath(path, self._root) if self._root else path.name

    def process_file(self, path: Path) -> FileRecord:
        """Read one file.

        Binary files (a NUL byte in the first 8 KiB) and files above the size
        cap are returned as skipped records without content.

        Args:
            path (Path): the file

        Raises:
            FileProcessingError: if the path is not an existing regular file

        Returns:
            FileRecord: the record of the file
        """
        if not is_regular_file(path):
            raise FileProcessingError(file=path, reason=f"not a regular file: {path}")
        rel = self._rel(path)
        size = path.stat().st_size
        if size > self.max_file_size:
            logger.debug("Skipping oversized file %s (%d bytes)", rel, size)
            return FileRecord(path=path, rel=rel, byte_size=size, skipped=True)
        if is_binary(path):
            logger.debug("Skipping binary file %s", rel)
            return FileRecord(path=path, rel=rel, byte_size=size, skipped=True)

        content = read_mapped(path) if size > self.mmap_threshold else read_buffered(path)
        return FileRecord(
            path=path,
            rel=rel,
            content=content,
            byte_size=len(content),
            line_count=count_lines(content),
            processed=True,
        )

    def _record_progress(self, record: FileRecord) -> None:
        with self._progress_lock:
            p = self._progress
            self._progress = p.model_copy(
                update={
                    "processed_files": p.processed_files + int(record.processed),
                    "skipped_files": p.skipped_files + int(record.skipped),
                    "error_files": p.error_files + int(record.error is not None),
                    "current_file": record.rel,
                },
            )
            snapshot = self._progress
        self._publish(snapshot)

    def _publish(self, snapshot: ProgressInfo) -> None:
        if self._callback is not None:
            self._callback(snapshot)
        if self.tracker is not None and self._job_id is not None:
            self.tracker.update_progress(self._job_id, snapshot)

    # Summaries

    @staticmethod
    def is_readme_file(path: Path | str) -> bool:
        return is_readme_file(path)

    def _summarizer_for(self, options: SummarizationOptions | None) -> Summarizer:
        if options is None or options == self.options:
            return self._summarizer
        with self._summarizers_lock:
            summarizer = self._summarizers.get(options)
            if summarizer is None:
                summarizer = Summarizer(options, self._extractor)
                self._summarizers[options] = summarizer
            return summarizer

    def should_summarize(self, record: FileRecord, options: SummarizationOptions | None = None) -> bool:
        return self._summarizer_for(options).should_summarize(record)

    def summarize(self, record: FileRecord, options: SummarizationOptions | None = None) -> str:
        """Return the export text of a record: the full text or its summary.

        Args:
            record (FileRecord): a processed record
            options (SummarizationOptions | None): options overriding the processor's

        Returns:
            str: the text to export
        """
        return self._summarizer_for(options).render(record)

    def annotate(self, record: FileRecord, options: SummarizationOptions | None = None) -> FileRecord:
        """Return a copy of a record with its entities, first lines and snippets filled in."""
        return self._summarizer_for(options).annotate(record)
