"""BulkUpdateCoordinator — batch updates with per-item failure isolation.

A batch is processed chunk by chunk with a pause in between. Every item is
its own ledger transaction, final once committed; a failing item is
recorded on the job and the batch moves on. Progress is saved after each
chunk, and a cancellation request is honoured before the next one starts.
"""

import time
from uuid import uuid4

from protean.exceptions import InvalidOperationError, ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from stockledger.adjustment.adjustment import AdjustmentType
from stockledger.adjustment.processor import AdjustmentProcessor
from stockledger.bulk.job import BatchType, BulkJob
from stockledger.errors import InvariantViolation, StockLedgerError, describe_error
from stockledger.ledger.transaction import atomic, compare_and_swap
from stockledger.outcomes import InsufficientStock, TransitionStatus
from stockledger.reservation.manager import ReservationManager
from stockledger.settings import load_settings
from stockledger.utils.clock import utcnow
from stockledger.utils.logging import get_logger

logger = get_logger(__name__)

_ITEM_ERRORS = (ValidationError, StockLedgerError, ObjectNotFoundError, InvalidOperationError)


def _parse_quantity(raw):
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError({"quantity": [f"Quantity must be a whole number, got {raw!r}"]}) from None


class BulkUpdateCoordinator:
    def __init__(
        self,
        processor: AdjustmentProcessor | None = None,
        reservations: ReservationManager | None = None,
        settings=None,
        sleep=time.sleep,
    ):
        self.processor = processor or AdjustmentProcessor()
        self.reservations = reservations or ReservationManager(ledger=self.processor.ledger)
        self._settings = settings
        self.sleep = sleep

    @property
    def settings(self):
        return self._settings or load_settings()

    def _repository(self):
        return current_domain.repository_for(BulkJob)

    def get_job(self, job_id) -> BulkJob:
        return self._repository().get(str(job_id))

    # -------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------
    def submit_batch(
        self,
        items,
        batch_reason,
        actor_id,
        batch_type=BatchType.ADJUSTMENT,
        chunk_size=None,
        inter_chunk_delay=None,
    ) -> BulkJob:
        """Create a job and process it to completion."""
        job = self.create_job(items, batch_reason, actor_id, batch_type=batch_type, chunk_size=chunk_size)
        return self.process_job(job.job_id, inter_chunk_delay=inter_chunk_delay)

    def create_job(self, items, batch_reason, actor_id, batch_type=BatchType.ADJUSTMENT, chunk_size=None) -> BulkJob:
        """Record a RUNNING job holding every item as pending."""
        items = list(items or [])
        chunk_size = chunk_size if chunk_size is not None else self.settings.bulk_chunk_size

        errors = {}
        if not batch_reason or not str(batch_reason).strip():
            errors["batch_reason"] = ["A reason is required for every batch"]
        if not actor_id:
            errors["actor_id"] = ["An actor is required for every batch"]
        if chunk_size < 1:
            errors["chunk_size"] = ["Chunk size must be at least 1"]
        if len(items) > self.settings.bulk_max_items:
            errors["items"] = [f"A batch holds at most {self.settings.bulk_max_items} items"]
        try:
            batch_type = batch_type if isinstance(batch_type, BatchType) else BatchType(batch_type)
        except ValueError:
            errors["batch_type"] = [f"Unknown batch type: {batch_type}"]
        if errors:
            raise ValidationError(errors)

        job_id = str(uuid4())

        def unit():
            job = BulkJob.start(
                job_id=job_id,
                batch_type=batch_type,
                batch_reason=batch_reason,
                actor_id=actor_id,
                items=items,
                chunk_size=chunk_size,
                created_at=utcnow(),
            )
            compare_and_swap(self._repository(), job, job_id, 0)
            return job

        job = atomic(unit, aggregate="BulkJob", identifier=job_id)
        logger.info(
            "Bulk job created",
            job_id=job_id,
            batch_type=batch_type.value,
            total_items=len(items),
            chunk_size=chunk_size,
            actor_id=str(actor_id),
        )
        return job

    # -------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------
    def process_job(self, job_id, inter_chunk_delay=None) -> BulkJob:
        """Work through a job's pending items and close it."""
        delay = inter_chunk_delay if inter_chunk_delay is not None else self.settings.bulk_inter_chunk_delay_seconds
        job = self.get_job(job_id)
        if not job.is_running:
            return job

        pending = job.pending_results()
        chunks = [pending[i : i + job.chunk_size] for i in range(0, len(pending), job.chunk_size)]

        for index, chunk in enumerate(chunks):
            if self.get_job(job_id).cancel_requested:
                logger.info("Bulk job cancelled", job_id=str(job_id), chunks_done=index, chunks_total=len(chunks))
                break

            outcomes = [self._process_item(job, result) for result in chunk]
            self._save_progress(job_id, outcomes)

            if index < len(chunks) - 1 and delay:
                self.sleep(delay)

        return self._finish(job_id)

    def cancel(self, job_id) -> BulkJob:
        """Ask a running job to stop before its next chunk. Committed items stay."""
        job_id = str(job_id)

        def unit():
            repo = self._repository()
            job = repo.get(job_id)
            if not job.is_running or job.cancel_requested:
                return job
            expected_version = job.version
            job.request_cancel()
            compare_and_swap(repo, job, job_id, expected_version)
            return job

        job = atomic(unit, aggregate="BulkJob", identifier=job_id)
        logger.info("Bulk job cancellation requested", job_id=job_id, status=job.status)
        return job

    def _process_item(self, job, result):
        try:
            reference = self._apply_item(job, result)
        except _ITEM_ERRORS as exc:
            if isinstance(exc, InvariantViolation):
                logger.critical(
                    "Bulk item hit a ledger invariant violation",
                    job_id=str(job.job_id),
                    position=result.position,
                    error=describe_error(exc),
                )
            else:
                logger.warning(
                    "Bulk item failed",
                    job_id=str(job.job_id),
                    position=result.position,
                    product_id=result.product_id,
                    error=describe_error(exc),
                )
            return result.position, False, None, describe_error(exc)
        except Exception as exc:
            # Recorded as a failed item so the job still closes
            logger.exception(
                "Bulk item raised an unexpected error",
                job_id=str(job.job_id),
                position=result.position,
                product_id=result.product_id,
            )
            return result.position, False, None, f"Unexpected error: {exc.__class__.__name__}: {exc}"
        return result.position, True, reference, None

    def _apply_item(self, job, result):
        if job.batch_type == BatchType.RESERVATION_RELEASE.value:
            if not result.reservation_id:
                raise ValidationError({"reservation_id": ["Item has no reservation id"]})
            transition = self.reservations.release(result.reservation_id, result.reason or job.batch_reason)
            if transition.status is TransitionStatus.NOT_FOUND:
                raise ValidationError({"reservation_id": [f"Reservation {result.reservation_id} not found"]})
            return str(result.reservation_id)

        if not result.product_id:
            raise ValidationError({"product_id": ["Item has no product id"]})
        quantity = _parse_quantity(result.quantity)

        if job.batch_type == BatchType.RESERVATION.value:
            if quantity is None:
                raise ValidationError({"quantity": ["Item has no quantity"]})
            outcome = self.reservations.reserve(
                result.product_id,
                quantity,
                order_id=result.order_id,
                cart_id=result.cart_id,
                reason=result.reason or job.batch_reason,
            )
            if isinstance(outcome, InsufficientStock):
                raise ValidationError({"quantity": [str(outcome)]})
            return str(outcome.reservation_id)

        adjustment = self.processor.adjust(
            product_id=result.product_id,
            adjustment_type=result.adjustment_type or AdjustmentType.CORRECTION,
            quantity=quantity,
            reason=result.reason or job.batch_reason,
            actor_id=job.actor_id,
        )
        return str(adjustment.adjustment_id)

    def _save_progress(self, job_id, outcomes):
        def unit():
            repo = self._repository()
            job = repo.get(str(job_id))
            expected_version = job.version
            for position, succeeded, reference, error in outcomes:
                job.record_outcome(position, succeeded, reference=reference, error=error)
            compare_and_swap(repo, job, str(job_id), expected_version)
            return job

        job = atomic(unit, aggregate="BulkJob", identifier=str(job_id))
        logger.debug(
            "Bulk job progress",
            job_id=str(job_id),
            processed=job.processed,
            total_items=job.total_items,
        )
        return job

    def _finish(self, job_id) -> BulkJob:
        def unit():
            repo = self._repository()
            job = repo.get(str(job_id))
            expected_version = job.version
            job.finish(utcnow())
            compare_and_swap(repo, job, str(job_id), expected_version)
            return job

        job = atomic(unit, aggregate="BulkJob", identifier=str(job_id))
        logger.info(
            "Bulk job finished",
            job_id=str(job_id),
            status=job.status,
            succeeded=job.succeeded,
            failed=job.failed,
            total_items=job.total_items,
        )
        return job
