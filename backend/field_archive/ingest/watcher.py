"""Delta-sync watcher that polls a remote drive and feeds new files to the pipeline."""

from __future__ import annotations

import re
import threading
import time
from datetime import datetime
from typing import Callable

from field_archive.core.logging import ctx, get_logger
from field_archive.core.metrics import POLL_DURATION, POLLS
from field_archive.ingest.pipeline import IngestPipeline
from field_archive.ingest.protocols import RemoteDrive
from field_archive.ingest.types import (
    PollResult,
    RemoteItem,
    WatcherState,
    WatcherStatus,
    is_accepted,
)
from field_archive.utils.time import utc_now

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL = 5 * 60
DEFAULT_INTER_FILE_DELAY = 15

_PROCESSED = "processed"
_SKIPPED = "skipped"
_DUPLICATE = "duplicate"
_FAILED = "failed"


def relative_folder(parent_path: str | None, watch_folder: str | None) -> str:
    """Turn a drive parent reference (``/drives/x/root:/Watch/Sub``) into ``Sub``."""
    if not parent_path:
        return ""
    folder = re.sub(r"^.*?:/?", "", parent_path, count=1)
    if watch_folder:
        prefix = watch_folder.strip("/")
        if folder == prefix:
            return ""
        if folder.startswith(prefix + "/"):
            folder = folder[len(prefix) + 1 :]
    return folder.strip("/")


class DeltaSyncWatcher:
    """Single-instance poller over a remote drive's change feed.

    State (cursor, running flag, counters) lives on the instance behind
    ``_state_lock``; ``status()`` returns a copy. Polls are serialised by
    ``_poll_lock``, so the periodic thread and ``trigger_manual_sync()`` never
    run against the same cursor at once. ``stop()`` only prevents the next
    scheduled poll; a poll in flight runs to completion.
    """

    def __init__(
        self,
        drive: RemoteDrive,
        pipeline: IngestPipeline,
        watch_folder: str | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        inter_file_delay: float = DEFAULT_INTER_FILE_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.drive = drive
        self.pipeline = pipeline
        self.watch_folder = watch_folder
        self.poll_interval = poll_interval
        self.inter_file_delay = inter_file_delay
        self._sleep = sleep

        self._state_lock = threading.Lock()
        self._start_lock = threading.Lock()
        self._poll_lock = threading.Lock()

        self._state = WatcherState.STOPPED
        self._cursor: str | None = None
        self._last_sync: datetime | None = None
        self._files_processed = 0
        self._site_id: str | None = None
        self._drive_id: str | None = None
        self._stop_event: threading.Event | None = None
        self._thread: threading.Thread | None = None

    # Lifecycle --------------------------------------------------------

    def status(self) -> WatcherStatus:
        with self._state_lock:
            return WatcherStatus(
                state=self._state,
                last_sync=self._last_sync,
                files_processed=self._files_processed,
                cursor_set=self._cursor is not None,
                poll_interval_seconds=self.poll_interval,
                site_id=self._site_id,
                drive_id=self._drive_id,
            )

    @property
    def cursor(self) -> str | None:
        with self._state_lock:
            return self._cursor

    def start(self) -> None:
        """Resolve the drive, poll once, then poll every ``poll_interval`` until stopped.

        No-op when already running. Errors resolving the drive propagate and
        leave the watcher stopped.
        """
        with self._start_lock:
            with self._state_lock:
                if self._state is WatcherState.RUNNING:
                    return
            try:
                site_id, drive_id = self.drive.resolve_drive()
            except Exception as exc:
                with self._state_lock:
                    self._state = WatcherState.STOPPED
                logger.error("Failed to start watcher: %s", exc)
                raise
            stop_event = threading.Event()
            with self._state_lock:
                self._site_id = site_id
                self._drive_id = drive_id
                self._state = WatcherState.RUNNING
                self._stop_event = stop_event
        logger.info(
            "Watcher started, polling every %ss",
            self.poll_interval,
            extra=ctx(site_id=site_id, drive_id=drive_id),
        )

        self.poll()

        with self._state_lock:
            if stop_event.is_set():
                return
            thread = threading.Thread(
                target=self._run_periodic,
                args=(stop_event,),
                name="delta-sync-watcher",
                daemon=True,
            )
            self._thread = thread
        thread.start()

    def stop(self) -> None:
        with self._state_lock:
            if self._stop_event is not None:
                self._stop_event.set()
                self._stop_event = None
            was_running = self._state is WatcherState.RUNNING
            self._state = WatcherState.STOPPED
        if was_running:
            logger.info("Watcher stopped")

    def join(self, timeout: float | None = None) -> None:
        """Wait for the periodic thread of the last start() to exit."""
        with self._state_lock:
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _run_periodic(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.poll_interval):
            self.poll()

    # Polling ----------------------------------------------------------

    def poll(self) -> PollResult:
        """Run one poll from the current cursor. Never raises."""
        with self._poll_lock:
            return self._poll_locked()

    def trigger_manual_sync(self) -> PollResult:
        """Drop the cursor and run a full-resync poll now, waiting for any poll in flight."""
        with self._poll_lock:
            with self._state_lock:
                self._cursor = None
            logger.info("Manual sync requested, starting full resync")
            return self._poll_locked()

    def _poll_locked(self) -> PollResult:
        result = PollResult()
        started = time.perf_counter()
        with self._state_lock:
            cursor = self._cursor
        try:
            if self._drive_id is None:
                site_id, drive_id = self.drive.resolve_drive()
                with self._state_lock:
                    self._site_id, self._drive_id = site_id, drive_id
            page = self.drive.list_changes(cursor)
        except Exception as exc:
            with self._state_lock:
                self._cursor = None
            POLLS.labels(outcome="failed").inc()
            logger.error("Delta poll error, cursor reset for full resync: %s", exc)
            result.ok = False
            result.error = str(exc)
            return result

        result.seen = len(page.entries)
        next_cursor = page.next_cursor
        candidates = [item for item in page.entries if self._is_candidate(item)]
        touched_remote = False
        for item in candidates:
            outcome = self._process_item(item, delay_first=touched_remote)
            if outcome != _SKIPPED:
                touched_remote = True
            if outcome == _PROCESSED:
                result.processed += 1
            elif outcome in (_SKIPPED, _DUPLICATE):
                result.skipped += 1
            else:
                result.failed += 1
            if outcome == _FAILED:
                # not in the ledger: keep the old cursor so the item is listed again next poll
                next_cursor = cursor

        with self._state_lock:
            self._cursor = next_cursor
            self._last_sync = utc_now()
        elapsed = time.perf_counter() - started
        POLLS.labels(outcome="ok").inc()
        POLL_DURATION.observe(elapsed)
        logger.info(
            "Delta poll complete: %s entries, %s processed, %s skipped, %s failed",
            result.seen,
            result.processed,
            result.skipped,
            result.failed,
            extra=ctx(duration_s=round(elapsed, 3)),
        )
        return result

    def _is_candidate(self, item: RemoteItem) -> bool:
        return item.is_file and not item.deleted and is_accepted(item.name)

    def _process_item(self, item: RemoteItem, delay_first: bool) -> str:
        try:
            if self.pipeline.ledger.has_been_ingested(item.id):
                return _SKIPPED
        except Exception as exc:
            # the unique constraint still guards the insert
            logger.warning("Ledger check failed for %s, continuing: %s", item.name, exc)

        if delay_first and self.inter_file_delay > 0:
            self._sleep(self.inter_file_delay)

        logger.info("Processing remote file: %s", item.name, extra=ctx(remote_item_id=item.id))
        try:
            data = self.drive.download(item)
        except Exception as exc:
            logger.error("Download failed for %s, will retry next poll: %s", item.name, exc)
            return _FAILED

        try:
            document = self.pipeline.ingest_remote_item(
                item,
                data,
                drive_id=self._drive_id,
                folder=relative_folder(item.parent_path, self.watch_folder),
            )
        except Exception as exc:
            logger.error("Error processing %s, will retry next poll: %s", item.name, exc, exc_info=True)
            return _FAILED
        if document is None:
            return _DUPLICATE
        with self._state_lock:
            self._files_processed += 1
        return _PROCESSED


__all__ = ["DeltaSyncWatcher", "relative_folder"]
