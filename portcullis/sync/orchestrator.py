"""
Sync dispatch pipeline.

Stages run strictly in order, each depending on the previous one:

    Received -> Validated -> Extracted -> Persisted -> Dispatched

Any stage may end the run early. Only a dispatch failure happens after the
job record exists, so only that outcome (and the success) carries a sync id.
Jobs are never rolled back; the id is the handle for re-dispatching later.
"""
from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, Optional

from portcullis.core.config import Settings, get_settings
from portcullis.core.errors import (
    DispatchError,
    ExtractionError,
    PersistenceError,
    ValidationError,
)
from portcullis.core.metrics import snapshot_rows, stage_duration, sync_requests
from portcullis.core.retry_config import Deadline
from portcullis.core.structured_logging import filter_sensitive_fields, with_sync_id
from portcullis.ingestion.introspection import SourceIntrospector
from portcullis.ingestion.snapshot import SnapshotExtractor, SnapshotPayload
from portcullis.sync.dispatcher import ProvisionDispatcher
from portcullis.sync.job_store import SyncJobStore
from portcullis.sync.validation import RequestValidator

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "ETL process and container provisioning initiated successfully"


class SyncState(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    EXTRACTED = "extracted"
    PERSISTED = "persisted"
    DISPATCHED = "dispatched"
    VALIDATION_FAILED = "validation_failed"
    EXTRACTION_FAILED = "extraction_failed"
    PERSISTENCE_FAILED = "persistence_failed"
    DISPATCH_FAILED = "dispatch_failed"
    UNHANDLED_FAILURE = "unhandled_failure"


@dataclass
class SyncOutcome:
    """Terminal state plus the caller-visible response."""
    state: SyncState
    status_code: int
    body: Dict[str, Any]
    sync_id: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.state == SyncState.DISPATCHED


@contextmanager
def _timed(stage: str) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        stage_duration.labels(stage=stage).observe(time.perf_counter() - start)


class Orchestrator:
    def __init__(
        self,
        validator: RequestValidator,
        introspector: SourceIntrospector,
        extractor: SnapshotExtractor,
        job_store: SyncJobStore,
        dispatcher: ProvisionDispatcher,
        settings: Optional[Settings] = None,
    ):
        self.validator = validator
        self.introspector = introspector
        self.extractor = extractor
        self.job_store = job_store
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()

    async def run(self, raw_body: Any) -> SyncOutcome:
        """Run one sync request to a terminal state. Never raises."""
        try:
            outcome = await self._run(raw_body)
        except Exception as exc:  # noqa: BLE001
            outcome = _unhandled(exc, None)
        sync_requests.labels(outcome=outcome.state.value).inc()
        return outcome

    async def _run(self, raw_body: Any) -> SyncOutcome:
        deadline = Deadline.after(self.settings.sync_deadline_seconds)

        # Received -> Validated
        try:
            with _timed("validation"):
                request = self.validator.validate(raw_body)
        except ValidationError as exc:
            logger.warning(
                "Validation errors: %s",
                exc.issues,
                extra={"event": "validation_failed"},
            )
            return SyncOutcome(
                state=SyncState.VALIDATION_FAILED,
                status_code=400,
                body={"success": False, "error": "Validation failed", "details": exc.issues},
            )

        link_type = request.normalized_link_type
        logger.info(
            "Sync requested for warehouse %s",
            request.internal_warehouse,
            extra={
                "event": "sync_validated",
                "organization": request.organization,
                "link_type": link_type,
                "destination": filter_sensitive_fields(request.destination_config.model_dump()),
            },
        )

        # Validated -> Extracted
        try:
            with _timed("introspection"):
                tables = await self.introspector.list_tables(
                    link_type, request.internal_credentials, deadline
                )
            if not tables:
                logger.warning("Source reported no tables; continuing with empty snapshot")
            with _timed("extraction"):
                snapshot = await self.extractor.extract(
                    link_type, request.internal_credentials, tables, deadline
                )
                payload = snapshot.payload
        except ExtractionError as exc:
            logger.error(
                "Extraction failed: %s",
                exc.message,
                extra={"event": "extraction_failed", "code": exc.code, "category": exc.category.value},
            )
            return SyncOutcome(
                state=SyncState.EXTRACTION_FAILED,
                status_code=500,
                body={"success": False, "syncId": None, "error": exc.message},
            )
        snapshot_rows.observe(snapshot.row_count)

        # Extracted -> Persisted
        try:
            with _timed("persistence"):
                sync_id = await self.job_store.create(request.job_fields())
        except PersistenceError as exc:
            logger.error("Database error: %s", exc.message, extra={"event": "persistence_failed"})
            return SyncOutcome(
                state=SyncState.PERSISTENCE_FAILED,
                status_code=500,
                body={"success": False, "error": "Database error", "details": exc.message},
            )

        # Persisted -> Dispatched | DispatchFailed; every outcome from here carries the sync id
        with with_sync_id(sync_id):
            try:
                return await self._dispatch(request.organization, sync_id, payload, deadline)
            except Exception as exc:  # noqa: BLE001
                return _unhandled(exc, sync_id)

    async def _dispatch(
        self,
        organization: str,
        sync_id: str,
        payload: SnapshotPayload,
        deadline: Deadline,
    ) -> SyncOutcome:
        dispatch_request = self.dispatcher.build_request(
            organization=organization,
            sync_id=sync_id,
            data=payload.data,
            schema=payload.schema,
        )
        try:
            with _timed("dispatch"):
                result = await self.dispatcher.trigger(dispatch_request, deadline)
        except DispatchError as exc:
            logger.error(
                "Dispatch error: %s",
                exc.message,
                extra={"event": "dispatch_failed", "attempts": exc.attempts},
            )
            await self._record_dispatch(sync_id, exc.attempts, exc.message)
            return SyncOutcome(
                state=SyncState.DISPATCH_FAILED,
                status_code=422,
                body={"success": False, "syncId": sync_id, "error": "Dispatch error", "details": exc.message},
                sync_id=sync_id,
            )

        await self._record_dispatch(sync_id, result.attempts, None)
        return SyncOutcome(
            state=SyncState.DISPATCHED,
            status_code=200,
            body={"success": True, "syncId": sync_id, "message": SUCCESS_MESSAGE},
            sync_id=sync_id,
        )

    async def _record_dispatch(self, sync_id: str, attempts: int, error: Optional[str]) -> None:
        # bookkeeping only; the dispatch outcome already stands
        try:
            await self.job_store.record_dispatch(sync_id, attempts, error)
        except PersistenceError as exc:
            logger.warning("Could not record dispatch outcome: %s", exc.message)


def _unhandled(exc: Exception, sync_id: Optional[str]) -> SyncOutcome:
    logger.exception("ETL process failed", extra={"event": "sync_unhandled"})
    return SyncOutcome(
        state=SyncState.UNHANDLED_FAILURE,
        status_code=500,
        body={"success": False, "syncId": sync_id, "error": str(exc) or "Unknown error occurred"},
        sync_id=sync_id,
    )
