"""Pipeline orchestrator: the scan-and-advance loop that drives every product
through analysis → SEO → front image → back image.

Each tick re-reads every record from the store, moves each active record
forward by at most one stage, and persists after every transition.  Ticks are
fired on a fixed interval without waiting for the previous one, so a record
whose stage is still running is skipped: the in-flight set covers this process,
and the claim re-reads the record and only proceeds if the stage is still
pending.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
import uuid
from typing import Any, Callable, Dict, Optional, Set

import log_setup
from edits import EDITABLE_FIELDS, analyze_config_diff
from errors import ProductNotFound, RetryNotAllowed
from models import (
    OPEN_STAGE_STATUSES,
    STAGE_LABELS,
    STAGE_OUTPUTS,
    STAGES,
    OverallStatus,
    ProductRecord,
    StageStatus,
    status_field,
)
from stages import STAGE_EXECUTORS, StageExecutor

log = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "System Timeout"


def max_retries_message(limit: int) -> str:
    return f"Max retries exceeded ({limit})"


def next_stage(record: ProductRecord) -> Optional[str]:
    """The stage this record may run now, or None if it has to wait."""
    analysis = record.analysis_status
    seo = record.seo_status
    front = record.front_status
    back = record.back_status

    if analysis == StageStatus.PENDING:
        return "analysis"
    if seo == StageStatus.PENDING and analysis == StageStatus.COMPLETED:
        return "seo"
    if front == StageStatus.PENDING and seo == StageStatus.COMPLETED:
        return "front"
    if back == StageStatus.PENDING and front == StageStatus.COMPLETED:
        return "back"
    return None


class PipelineOrchestrator:
    """Drives products forward.  All collaborators are injected."""

    def __init__(
        self,
        store,
        client,
        sink,
        bus=None,
        clock: Callable[[], float] = time.time,
        interval: float = 5.0,
        timeout: float = 600.0,
        max_retries: int = 3,
        executors: Optional[Dict[str, StageExecutor]] = None,
    ) -> None:
        self.store = store
        self.client = client
        self.sink = sink
        self.bus = bus
        self.clock = clock
        self.interval = interval
        self.timeout = timeout
        self.max_retries = max_retries
        self.executors = dict(executors or STAGE_EXECUTORS)

        self._in_flight: Set[str] = set()
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _save(self, record: ProductRecord) -> bool:
        """Write an existing record.  False means it was deleted meanwhile."""
        if not self.store.products.update(record):
            log.info("record disappeared before write, ignored", extra={"product": record.id})
            return False
        self._publish(record)
        return True

    def _publish(self, record: ProductRecord) -> None:
        if self.bus is not None:
            self.bus.publish({"type": "product", "product": record.summary()})

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self) -> None:
        try:
            records = self.store.products.list()
        except Exception:
            log.error("Tick aborted: could not list products", exc_info=True)
            return

        for record in records:
            with log_setup.product_context(record.id):
                try:
                    await self._advance(record)
                except Exception as exc:
                    log.error("tick failed: %s", exc, exc_info=True)
                    self.sink.emit(record.id, f"Processing Failed: {exc}")

    async def _advance(self, listed: ProductRecord) -> None:
        # Decide on the stored record, not the listed snapshot
        record = self.store.products.get(listed.id)
        if record is None or record.is_terminal:
            return

        if self.clock() - record.created_at > self.timeout:
            self._exit(record, TIMEOUT_MESSAGE)
            return

        if record.retry_count >= self.max_retries:
            self._exit(record, max_retries_message(self.max_retries))
            return

        if record.id in self._in_flight:
            return

        if all(record.stage_status(s) == StageStatus.COMPLETED for s in STAGES):
            self._save(record.with_changes(
                overall_status=OverallStatus.FINISHED,
                error_log="Finished",
                updated_at=self.clock(),
            ))
            return

        stage = next_stage(record)
        if stage is None:
            return
        await self._run_stage(record.id, stage)

    def _exit(self, record: ProductRecord, message: str) -> None:
        """Force a record to ``exited`` and fail every stage that was still open."""
        changes: Dict[str, Any] = {
            "overall_status": OverallStatus.EXITED,
            "error_log": message,
            "updated_at": self.clock(),
        }
        for stage in STAGES:
            if record.stage_status(stage) in OPEN_STAGE_STATUSES:
                changes[status_field(stage)] = StageStatus.FAILED

        if self._save(record.with_changes(**changes)):
            log.warning("exited: %s", message)
            self.sink.emit(record.id, message)

    # ------------------------------------------------------------------
    # Stage execution
    # ------------------------------------------------------------------

    async def _run_stage(self, product_id: str, stage: str) -> None:
        field = status_field(stage)
        label = STAGE_LABELS[stage]

        # Claim: the fresh record must still be pending on this stage with its
        # predecessor completed, or another tick / an edit got there first
        fresh = self.store.products.get(product_id)
        if (
            fresh is None
            or fresh.is_terminal
            or next_stage(fresh) != stage
            or product_id in self._in_flight
        ):
            return

        self._in_flight.add(product_id)
        try:
            claimed = fresh.with_changes(**{
                field: StageStatus.UPDATING,
                "overall_status": OverallStatus.RUNNING,
                "error_log": f"{label} in progress…",
                "updated_at": self.clock(),
            })
            if not self._save(claimed):
                return
            log.info("%s started", stage)

            try:
                output = await self.executors[stage](claimed, self.client)
            except Exception as exc:
                self._fail(product_id, stage, exc)
                return

            self._complete(product_id, stage, output)
        finally:
            self._in_flight.discard(product_id)

    def _complete(self, product_id: str, stage: str, output: Dict[str, Any]) -> None:
        current = self.store.products.get(product_id)
        if current is None:
            log.info("%s finished after the record was deleted, result dropped", stage)
            return
        if current.is_terminal or current.stage_status(stage) != StageStatus.UPDATING:
            log.info("%s result dropped (record is now %s / %s)",
                     stage, current.overall_status.value,
                     current.stage_status(stage).value)
            return

        allowed = STAGE_OUTPUTS[stage]
        changes: Dict[str, Any] = {k: v for k, v in output.items() if k in allowed}
        changes[status_field(stage)] = StageStatus.COMPLETED
        changes["updated_at"] = self.clock()
        if stage == STAGES[-1]:
            changes["overall_status"] = OverallStatus.FINISHED
            changes["error_log"] = "Finished"
        else:
            changes["error_log"] = f"{STAGE_LABELS[stage]} completed"

        if self._save(current.with_changes(**changes)):
            log.info("%s completed", stage)

    def _fail(self, product_id: str, stage: str, exc: Exception) -> None:
        message = str(exc) or exc.__class__.__name__
        log.warning("%s failed: %s: %s", stage, exc.__class__.__name__, message)

        current = self.store.products.get(product_id)
        if current is None or current.is_terminal:
            return
        if current.stage_status(stage) != StageStatus.UPDATING:
            log.info("%s failure ignored (stage is now %s)", stage, current.stage_status(stage).value)
            return

        changes: Dict[str, Any] = {
            "overall_status": OverallStatus.EXITED,
            "error_log": message,
            "retry_count": current.retry_count + 1,
            "updated_at": self.clock(),
            status_field(stage): StageStatus.FAILED,
        }

        if self._save(current.with_changes(**changes)):
            self.sink.emit(product_id, f"Processing Failed: {STAGE_LABELS[stage]}: {message}")

    # ------------------------------------------------------------------
    # Loop lifecycle
    # ------------------------------------------------------------------

    async def run_forever(self) -> None:
        """Fire a tick every ``interval`` seconds until stop() is called."""
        tasks: Set[asyncio.Task] = set()
        log.info("Pipeline loop started (interval=%.1fs)", self.interval)
        while not self._stopping.is_set():
            task = asyncio.create_task(self.tick())
            tasks.add(task)
            task.add_done_callback(tasks.discard)
            await asyncio.to_thread(self._stopping.wait, self.interval)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        log.info("Pipeline loop stopped")

    async def run_until_idle(self, max_ticks: int = 50) -> bool:
        """Tick back-to-back until nothing is left to do.  False if ``max_ticks`` ran out."""
        for _ in range(max_ticks):
            await self.tick()
            if not any(not r.is_terminal for r in self.store.products.list()):
                return True
        return False

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopping.clear()
        self._thread = threading.Thread(
            target=lambda: asyncio.run(self.run_forever()),
            name="pipeline",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stopping.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ------------------------------------------------------------------
    # Record commands
    # ------------------------------------------------------------------

    def create_product(self, raw_front: str, raw_back: str = "", **attributes: Any) -> ProductRecord:
        if not raw_front:
            raise ValueError("raw_front is required")
        now = self.clock()
        attributes = {k: v for k, v in attributes.items() if k in EDITABLE_FIELDS and v is not None}
        record = ProductRecord(
            id=uuid.uuid4().hex[:12],
            created_at=now,
            updated_at=now,
            raw_front=raw_front,
            raw_back=raw_back or "",
            error_log="Queued",
            **attributes,
        )
        self.store.products.put(record)
        self._publish(record)
        log.info("product created (back photo: %s)", "yes" if record.has_back else "no",
                 extra={"product": record.id})
        return record

    def get_product(self, product_id: str) -> ProductRecord:
        record = self.store.products.get(product_id)
        if record is None:
            raise ProductNotFound(product_id)
        return record

    def can_retry(self, record: ProductRecord) -> bool:
        return (
            record.overall_status == OverallStatus.EXITED
            and record.retry_count < self.max_retries
        )

    def retry(self, product_id: str) -> ProductRecord:
        """Put an exited record back in the queue; failed stages start over."""
        record = self.get_product(product_id)
        if record.overall_status != OverallStatus.EXITED:
            raise RetryNotAllowed(f"product {product_id} is {record.overall_status.value}, not exited")
        if record.retry_count >= self.max_retries:
            raise RetryNotAllowed(max_retries_message(self.max_retries))

        changes: Dict[str, Any] = {
            "overall_status": OverallStatus.RUNNING,
            "error_log": "Queued for retry",
            "updated_at": self.clock(),
        }
        for stage in STAGES:
            if record.stage_status(stage) in (StageStatus.FAILED, StageStatus.UPDATING):
                changes[status_field(stage)] = StageStatus.PENDING

        updated = record.with_changes(**changes)
        if not self._save(updated):
            raise ProductNotFound(product_id)
        log.info("re-queued (attempt %d)", record.retry_count + 1, extra={"product": product_id})
        return updated

    def edit(self, product_id: str, changes: Dict[str, Any]) -> ProductRecord:
        """Apply attribute edits and re-queue the stages they invalidate."""
        record = self.get_product(product_id)
        changes = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS and v is not None}
        diff = analyze_config_diff(record, changes)

        update: Dict[str, Any] = dict(changes)
        if diff.has_changes:
            for stage in diff.stages():
                update[status_field(stage)] = StageStatus.PENDING
                for out in STAGE_OUTPUTS[stage]:
                    update[out] = [] if out == "tags" else None
            # Stages the edit did not touch but that never finished run again too
            for stage in STAGES:
                if record.stage_status(stage) == StageStatus.FAILED:
                    update[status_field(stage)] = StageStatus.PENDING
            update["overall_status"] = OverallStatus.RUNNING
            update["error_log"] = "Queued for regeneration: " + ", ".join(diff.stages())
        update["updated_at"] = self.clock()

        updated = record.with_changes(**update)
        if not self._save(updated):
            raise ProductNotFound(product_id)
        log.info("edited (%s); regenerating %s",
                 ", ".join(sorted(changes)) or "no fields", diff.stages() or "nothing",
                 extra={"product": product_id})
        return updated

    def cancel(self, product_id: str) -> bool:
        """Delete a product.  An in-flight stage finishes but its result is dropped."""
        deleted = self.store.products.delete(product_id)
        if deleted:
            log.info("deleted", extra={"product": product_id})
            if self.bus is not None:
                self.bus.publish({"type": "product_deleted", "id": product_id})
        return deleted
