"""Time-boxed recording ingestion with continuation.

FetchScheduler pages through the provider listing (or through pending
ledger rows), downloads each recording not yet in the dedup cache,
stores it in SOURCE and records the outcome in the Recordings table.
When the elapsed time passes the budget between pages it queues a
checkpoint and schedules one ``continue_fetch`` follow-up.

Per-item order is download, store, dedup mark, ledger write. A crash
between the store and the ledger write leaves a blob without a PROCESSED
row; the dedup mark keeps it from being stored twice.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta

from recording_lifecycle.config import Settings
from recording_lifecycle.constants import (
    BLOB_CONTENT_TYPE,
    FetchStatus,
    Location,
    TranscriptionStatus,
)
from recording_lifecycle.lifecycle.checkpoint import (
    MODE_LEDGER,
    MODE_WINDOW,
    Checkpoint,
    CheckpointQueue,
)
from recording_lifecycle.lifecycle.dedup_cache import DedupCache
from recording_lifecycle.lifecycle.lease import Lease
from recording_lifecycle.lifecycle.triggers import TriggerScheduler
from recording_lifecycle.models import Recording, build_blob_name
from recording_lifecycle.observability.metrics import (
    RunMetrics,
    StageTimer,
    log_run_metrics,
)
from recording_lifecycle.provider.interface import ProviderRecording, RecordingProvider
from recording_lifecycle.results import FetchResult
from recording_lifecycle.storage.interface import BlobStore, StateStore
from recording_lifecycle.storage.recordings import RecordingLedger
from recording_lifecycle.utils.clock import (
    format_ledger_timestamp,
    now_utc,
    parse_ledger_timestamp,
)
from recording_lifecycle.utils.errors import LeaseUnavailableError, LifecycleError

logger = logging.getLogger(__name__)

CONTINUATION_HANDLER = "continue_fetch"
DEFAULT_WINDOW = timedelta(hours=24)


class FetchScheduler:
    """Ingests recordings into SOURCE and the Recordings table."""

    def __init__(
        self,
        provider: RecordingProvider,
        blobs: BlobStore,
        ledger: RecordingLedger,
        state: StateStore,
        triggers: TriggerScheduler,
        settings: Settings,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = now_utc,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.provider = provider
        self.blobs = blobs
        self.ledger = ledger
        self.triggers = triggers
        self.settings = settings
        self.sleep = sleep
        self.clock = clock
        self.monotonic = monotonic
        self.dedup = DedupCache(state, limit=settings.dedup_cache_limit)
        self.checkpoints = CheckpointQueue(state)
        self.lease = Lease(
            state, "fetch", ttl_seconds=settings.lease_ttl_seconds, clock=clock
        )
        self._started = 0.0

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def fetch_window(
        self,
        from_time: datetime | None = None,
        to_time: datetime | None = None,
        start_page: int = 1,
    ) -> FetchResult:
        """Ingest provider recordings started within ``[from_time, to_time]``.

        Args:
            from_time: Window start; defaults to 24 hours before ``to_time``.
            to_time: Window end; defaults to now.
            start_page: First listing page to request.

        Returns:
            FetchResult with per-outcome counts and a summary message.
        """
        to_time = to_time or self.clock()
        from_time = from_time or to_time - DEFAULT_WINDOW

        def body(result: FetchResult) -> None:
            self._window_loop(from_time, to_time, start_page, result)

        return self._run("fetch_window", body)

    def fetch_from_ledger(
        self, from_time: datetime | None = None, to_time: datetime | None = None
    ) -> FetchResult:
        """Ingest ledger rows whose fetch status is empty or PENDING.

        Rows are processed oldest ``timestamp_recording`` first. When a
        window is given, rows outside it (or with an unreadable
        timestamp) are left alone.
        """

        def body(result: FetchResult) -> None:
            self._ledger_loop(from_time, to_time, result)

        return self._run("fetch_from_ledger", body)

    def continue_fetch(self) -> FetchResult:
        """Resume the oldest queued checkpoint.

        The checkpoint is removed from the queue before any work starts,
        so a failing continuation does not run again.
        """

        def body(result: FetchResult) -> None:
            checkpoint = self.checkpoints.pop()
            if checkpoint is None:
                logger.info("No continuation checkpoint queued")
                return
            logger.info(
                "Resuming %s fetch at page %d",
                checkpoint.mode,
                checkpoint.page,
                extra={"operation": "continue_fetch"},
            )
            if checkpoint.mode == MODE_LEDGER:
                self._ledger_loop(checkpoint.from_time, checkpoint.to_time, result)
            else:
                to_time = checkpoint.to_time or self.clock()
                from_time = checkpoint.from_time or to_time - DEFAULT_WINDOW
                self._window_loop(from_time, to_time, checkpoint.page, result)

        return self._run("continue_fetch", body, reschedule_when_busy=True)

    def ingest_webhook_recording(self, recording: ProviderRecording) -> FetchResult:
        """Ingest a single pushed recording.

        Runs without the fetch lease; the dedup cache keeps a webhook and
        an overlapping scheduled fetch from storing the recording twice.
        """

        def body(result: FetchResult) -> None:
            result.fetched = 1
            self._ingest(recording, result)

        return self._run("ingest_webhook", body, use_lease=False)

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    def _window_loop(
        self,
        from_time: datetime,
        to_time: datetime,
        start_page: int,
        result: FetchResult,
    ) -> None:
        page_size = self.settings.page_size
        page = max(start_page, 1)
        while True:
            listing = self.provider.list_recordings(from_time, to_time, page, page_size)
            self.sleep(self.settings.rate_limit_seconds)
            items = listing.recordings
            result.fetched += len(items)
            if not items:
                break

            for item in items:
                self._ingest(item, result)

            if not listing.next_page_token and len(items) < page_size:
                break
            if self._over_budget():
                self._interrupt(
                    Checkpoint(MODE_WINDOW, from_time, to_time, page + 1), result
                )
                break
            page += 1

    def _ledger_loop(
        self,
        from_time: datetime | None,
        to_time: datetime | None,
        result: FetchResult,
    ) -> None:
        # Resolved rows leave the candidate set, so every pass (including a
        # continuation) starts from the first chunk of what is still pending.
        candidates = self._pending_ledger_items(from_time, to_time)
        page_size = self.settings.page_size
        chunks = [
            candidates[i:i + page_size] for i in range(0, len(candidates), page_size)
        ]
        for number, chunk in enumerate(chunks, start=1):
            result.fetched += len(chunk)
            for item in chunk:
                self._ingest(item, result)
            if number < len(chunks) and self._over_budget():
                self._interrupt(
                    Checkpoint(MODE_LEDGER, from_time, to_time, number + 1), result
                )
                break

    def _pending_ledger_items(
        self, from_time: datetime | None, to_time: datetime | None
    ) -> list[ProviderRecording]:
        tz = self.settings.timezone
        selected: list[tuple[datetime | None, ProviderRecording]] = []
        for _, recording in self.ledger.list_recordings():
            if recording.fetch_status not in ("", FetchStatus.PENDING):
                continue
            recorded_at = parse_ledger_timestamp(recording.timestamp_recording, tz)
            if from_time or to_time:
                if recorded_at is None:
                    continue
                if from_time and recorded_at < from_time:
                    continue
                if to_time and recorded_at > to_time:
                    continue
            try:
                duration = int(float(recording.duration or 0))
            except ValueError:
                duration = 0
            selected.append(
                (
                    recorded_at,
                    ProviderRecording(
                        id=recording.record_id,
                        download_url=recording.download_url,
                        start_time=recorded_at,
                        duration=duration,
                    ),
                )
            )
        # Oldest first; rows without a readable timestamp go last.
        selected.sort(key=lambda pair: (pair[0] is None, pair[0] or datetime.min))
        return [item for _, item in selected]

    def _over_budget(self) -> bool:
        return self.monotonic() - self._started > self.settings.time_budget_seconds

    def _interrupt(self, checkpoint: Checkpoint, result: FetchResult) -> None:
        self.checkpoints.push(checkpoint)
        if not self.triggers.has_pending(CONTINUATION_HANDLER):
            self.triggers.schedule(
                CONTINUATION_HANDLER, self.settings.continuation_delay_seconds
            )
        result.interrupted = True
        result.next_page = checkpoint.page
        logger.info(
            "Time budget reached, continuing from page %d",
            checkpoint.page,
            extra={"operation": "fetch"},
        )

    # ------------------------------------------------------------------
    # Per-item ingestion
    # ------------------------------------------------------------------

    def _ingest(self, item: ProviderRecording, result: FetchResult) -> None:
        if not item.id or not item.download_url:
            result.skipped += 1
            logger.info(
                "Skipping recording without id or download url",
                extra={"record_id": item.id or None},
            )
            return

        try:
            processed = self.dedup.is_processed(item.id)
        except LifecycleError as exc:
            result.skipped += 1
            logger.error(
                "Dedup lookup failed, skipping recording: %s",
                exc,
                extra={"record_id": item.id, "error": str(exc)},
            )
            return
        if processed:
            result.duplicates += 1
            self._record_duplicate(item)
            return

        data = self.provider.download(item.download_url)
        self.sleep(self.settings.rate_limit_seconds)
        if data is None:
            result.download_errors += 1
            self._record(item, FetchStatus.DOWNLOAD_ERROR)
            return

        captured_at = item.start_time or self.clock()
        name = build_blob_name(item.id, captured_at)
        try:
            self.blobs.put(
                Location.SOURCE,
                name,
                data,
                description=f"recording_id={item.id}",
                content_type=BLOB_CONTENT_TYPE,
            )
        except Exception as exc:
            result.save_errors += 1
            logger.error(
                "Failed to store %s: %s",
                name,
                exc,
                extra={"record_id": item.id, "error": str(exc)},
            )
            self._record(item, FetchStatus.SAVE_ERROR)
            return

        try:
            self.dedup.mark_processed(item.id)
        except LifecycleError as exc:
            # The blob is stored, so the item still counts as saved.
            logger.error(
                "Failed to mark %s as processed: %s",
                item.id,
                exc,
                extra={"record_id": item.id, "error": str(exc)},
            )
        result.saved += 1
        self._record(item, FetchStatus.PROCESSED)
        logger.info("Stored %s", name, extra={"record_id": item.id})

    def _record_duplicate(self, item: ProviderRecording) -> None:
        # The original timestamp_fetch is kept so the row still shows when
        # the blob was actually stored.
        try:
            if not self.ledger.update_fetch_status(item.id, FetchStatus.DUPLICATE):
                self.ledger.upsert(self._new_row(item, FetchStatus.DUPLICATE))
        except LifecycleError as exc:
            logger.error(
                "Failed to record duplicate: %s",
                exc,
                extra={"record_id": item.id, "error": str(exc)},
            )

    def _record(self, item: ProviderRecording, status: FetchStatus) -> None:
        try:
            found = self.ledger.find(item.id)
            if found is None:
                row = self._new_row(item, status)
            else:
                row = self._merge_row(found[1], item, status)
            self.ledger.upsert(row)
        except LifecycleError as exc:
            logger.error(
                "Failed to record fetch status %s: %s",
                status,
                exc,
                extra={"record_id": item.id, "error": str(exc)},
            )

    def _new_row(self, item: ProviderRecording, status: FetchStatus) -> Recording:
        return self._merge_row(Recording(record_id=item.id), item, status)

    def _merge_row(
        self, row: Recording, item: ProviderRecording, status: FetchStatus
    ) -> Recording:
        """Fill empty descriptive cells from ``item`` and set the fetch status."""
        tz = self.settings.timezone
        if item.start_time is not None:
            if not row.timestamp_recording:
                row.timestamp_recording = format_ledger_timestamp(item.start_time, tz)
            local = parse_ledger_timestamp(row.timestamp_recording, tz)
            if local is not None:
                if not row.call_date:
                    row.call_date = local.strftime("%Y-%m-%d")
                if not row.call_time:
                    row.call_time = local.strftime("%H:%M:%S")
        if not row.download_url:
            row.download_url = item.download_url
        if not row.duration and item.duration:
            row.duration = str(item.duration)
        sales, customer = item.phone_numbers()
        if not row.sales_phone_number:
            row.sales_phone_number = sales
        if not row.customer_phone_number:
            row.customer_phone_number = customer

        row.fetch_status = status
        row.timestamp_fetch = self._now_cell()
        if status == FetchStatus.PROCESSED and not row.transcription_status:
            row.transcription_status = TranscriptionStatus.PENDING
        return row

    def _now_cell(self) -> str:
        return format_ledger_timestamp(self.clock(), self.settings.timezone)

    # ------------------------------------------------------------------
    # Run wrapper
    # ------------------------------------------------------------------

    def _run(
        self,
        label: str,
        body: Callable[[FetchResult], None],
        use_lease: bool = True,
        reschedule_when_busy: bool = False,
    ) -> FetchResult:
        result = FetchResult()
        timer = StageTimer(label)
        with timer:
            self._started = self.monotonic()
            try:
                self.settings.location_id(Location.SOURCE)
                if use_lease:
                    with self.lease:
                        body(result)
                else:
                    body(result)
            except LeaseUnavailableError as exc:
                result.success = False
                result.error = str(exc)
                logger.warning("%s skipped: %s", label, exc)
                if reschedule_when_busy and not self.triggers.has_pending(
                    CONTINUATION_HANDLER
                ):
                    self.triggers.schedule(
                        CONTINUATION_HANDLER, self.settings.continuation_delay_seconds
                    )
            except LifecycleError as exc:
                result.success = False
                result.error = str(exc)
                logger.error(
                    "%s failed: %s", label, exc, extra={"operation": label}
                )
            except Exception as exc:
                result.success = False
                result.error = f"{type(exc).__name__}: {exc}"
                logger.exception("%s failed unexpectedly", label)

        result.summarize(label, timer.duration_seconds)
        logger.info(
            result.message,
            extra={"operation": label, "duration_seconds": timer.duration_seconds},
        )
        log_run_metrics(
            RunMetrics(
                operation=label,
                ok=result.ok,
                total=result.fetched,
                succeeded=result.saved,
                failed=result.download_errors + result.save_errors,
                skipped=result.skipped + result.duplicates,
                duration_seconds=round(timer.duration_seconds, 3),
                error_message=result.error,
            )
        )
        return result
