"""
Ingestion queue: tracks uploaded invoice documents through extraction.

Each document becomes an IngestionRecord that moves forward through
Pending -> Processing -> Succeeded | Failed. Scheduled records are drained
by a single consumer, one extraction request at a time and strictly in
submission order, so completion order always equals enqueue order.

The record collection is only mutated through this class. All mutation
happens on one event loop, so no locking is needed.
"""

import uuid
from collections import OrderedDict, deque
from datetime import date
from typing import Any, Callable, Optional

from .config import logger
from .errors import (
    ConfigurationError,
    InvalidTransitionError,
    RecordBusyError,
    RecordNotFoundError,
    UnknownFieldError,
)
from .exporter import ExportPayload, documents_from_records, export_documents
from .extraction import ExtractionClient, ExtractionSuccess, HttpFailure, ParseFailure
from .schemas import (
    EDITABLE_FIELDS,
    ExportSettings,
    ExtractedInvoiceFields,
    IngestionRecord,
    OutputProfile,
    RawDocument,
    RecordStatus,
)

# Listener signature: (event name, affected record or None for "cleared")
QueueListener = Callable[[str, Optional[IngestionRecord]], None]


class IngestionQueue:
    """
    Owns the documents in flight and drives their state machine.

    Args:
        client: Extraction service client used for dispatch
        settings: Settings sent as hints with every dispatch and used for export
    """

    def __init__(self, client: ExtractionClient, settings: Optional[ExportSettings] = None):
        self.client = client
        self.settings = settings or ExportSettings()
        self._records: "OrderedDict[str, IngestionRecord]" = OrderedDict()
        self._scheduled: deque[str] = deque()
        self._listeners: list[QueueListener] = []
        self._draining = False
        self._sequence = 0
        self.selected_id: Optional[str] = None
        self.completion_order: list[str] = []

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, listener: QueueListener) -> Callable[[], None]:
        """Register a state-change listener. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: str, record: Optional[IngestionRecord]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, record)
            except Exception:
                logger.exception(f"Queue listener failed on '{event}' event")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> list[IngestionRecord]:
        """All records in submission order."""
        return list(self._records.values())

    @property
    def is_processing(self) -> bool:
        return self._draining

    def get(self, record_id: str) -> IngestionRecord:
        try:
            return self._records[record_id]
        except KeyError:
            raise RecordNotFoundError(record_id) from None

    def by_status(self, status: RecordStatus) -> list[IngestionRecord]:
        return [r for r in self._records.values() if r.status is status]

    def succeeded_records(self) -> list[IngestionRecord]:
        return self.by_status(RecordStatus.SUCCEEDED)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def enqueue(self, document: RawDocument) -> str:
        """Add a document as a Pending record and schedule it for dispatch."""
        self._sequence += 1
        record = IngestionRecord(
            id=uuid.uuid4().hex[:12],
            document=document,
            sequence=self._sequence,
        )
        self._records[record.id] = record
        self._scheduled.append(record.id)

        logger.info(f"Queued {document.filename} as {record.id}")
        self._emit("enqueued", record)
        return record.id

    async def process_pending(self) -> int:
        """
        Dispatch every scheduled record, one at a time, in submission order.

        Records enqueued while the drain is running are picked up by the
        same drain. A call made while a drain is already running returns
        immediately.

        Returns:
            Number of records dispatched by this call
        """
        if self._draining:
            return 0

        self._draining = True
        dispatched = 0
        try:
            while self._scheduled:
                record_id = self._scheduled.popleft()
                record = self._records.get(record_id)
                if record is None or record.status is not RecordStatus.PENDING:
                    continue
                await self._dispatch(record)
                dispatched += 1
        finally:
            self._draining = False

        if dispatched:
            logger.info(f"Processed {dispatched} document(s)")
        return dispatched

    async def _dispatch(self, record: IngestionRecord) -> None:
        record.transition(RecordStatus.PROCESSING)
        self._emit("processing", record)

        try:
            outcome = await self.client.dispatch(record.document, self.settings)
        except ConfigurationError as e:
            logger.error(f"Configuration error while dispatching {record.filename}: {e}")
            outcome = HttpFailure(reason=f"configuration error: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error while dispatching {record.filename}")
            outcome = HttpFailure(reason=f"unexpected error: {e}")

        if record.id not in self._records:
            # Removed while its request was in flight; nothing to update.
            return

        if isinstance(outcome, ExtractionSuccess):
            record.fields = outcome.fields
            record.transition(RecordStatus.SUCCEEDED)
            self.completion_order.append(record.id)
            if self.selected_id is None:
                self.selected_id = record.id
            logger.info(f"Extracted {record.filename}")
            self._emit("succeeded", record)
        elif isinstance(outcome, ParseFailure):
            record.fields = ExtractedInvoiceFields.empty(error=outcome.reason)
            self._fail(record, outcome.reason)
        elif isinstance(outcome, HttpFailure):
            self._fail(record, outcome.reason)
        else:
            self._fail(record, f"unexpected extraction outcome: {outcome!r}")

    def _fail(self, record: IngestionRecord, reason: str) -> None:
        record.error = reason
        record.transition(RecordStatus.FAILED)
        self.completion_order.append(record.id)
        logger.warning(f"Extraction failed for {record.filename}: {reason}")
        self._emit("failed", record)

    def update_field(self, record_id: str, field_name: str, value: Any) -> IngestionRecord:
        """
        Overwrite one extracted field. No validation is done here.

        Raises:
            RecordNotFoundError: unknown id
            RecordBusyError: the record is being processed
            UnknownFieldError: the field is not editable
        """
        record = self.get(record_id)

        if record.status is RecordStatus.PROCESSING:
            raise RecordBusyError(f"{record.filename} is being processed and cannot be edited")
        if field_name not in EDITABLE_FIELDS:
            raise UnknownFieldError(f"Unknown field: {field_name}")

        if record.fields is None:
            record.fields = ExtractedInvoiceFields.empty()
        setattr(record.fields, field_name, value)

        self._emit("updated", record)
        return record

    def retry(self, record_id: str) -> str:
        """
        Re-submit a failed document as a new Pending record.

        The failed record is removed; it never changes state itself.

        Raises:
            InvalidTransitionError: the record has not failed
        """
        record = self.get(record_id)
        if record.status is not RecordStatus.FAILED:
            raise InvalidTransitionError(
                f"{record.filename} is {record.status.value}; only failed documents can be retried"
            )

        self.remove(record_id)
        return self.enqueue(record.document)

    def remove(self, record_id: str) -> None:
        record = self.get(record_id)
        del self._records[record_id]
        if record_id in self.completion_order:
            self.completion_order.remove(record_id)
        if self.selected_id == record_id:
            self.selected_id = None
        self._emit("removed", record)

    def clear(self) -> None:
        self._records.clear()
        self._scheduled.clear()
        self.selected_id = None
        self.completion_order.clear()
        self._emit("cleared", None)

    def select(self, record_id: Optional[str]) -> None:
        """Set the record shown in the preview."""
        if record_id is not None:
            self.get(record_id)
        self.selected_id = record_id

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export(self, profile: OutputProfile, export_date: Optional[date] = None) -> ExportPayload:
        """Export every Succeeded record with the queue's settings."""
        return export_documents(
            documents_from_records(self._records.values()),
            self.settings,
            profile,
            export_date,
        )
