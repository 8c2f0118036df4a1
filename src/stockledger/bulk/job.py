"""BulkJob aggregate — the pollable progress record of a batch update.

Items are stored on the job as pending results when it is created, so a
worker can process a job that another caller submitted. Once the job leaves
RUNNING it is never changed again.
"""

from collections.abc import Mapping
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, HasMany, Identifier, Integer, String, Text

from stockledger.domain import stockledger


class BulkJobStatus(Enum):
    RUNNING = "Running"
    COMPLETED = "Completed"
    PARTIALLY_COMPLETED = "Partially_Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


class BatchType(Enum):
    ADJUSTMENT = "Adjustment"
    RESERVATION = "Reservation"
    RESERVATION_RELEASE = "Reservation_Release"


class ItemOutcome(Enum):
    PENDING = "Pending"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    SKIPPED = "Skipped"


ITEM_FIELDS = ("product_id", "reservation_id", "adjustment_type", "quantity", "reason", "order_id", "cart_id")


def _as_text(value):
    if value is None:
        return None
    if isinstance(value, Enum):
        value = value.value
    return str(value)


@stockledger.entity(part_of="BulkJob")
class BulkItemResult:
    """One submitted item and what became of it.

    Item fields are kept as submitted text and only parsed when the item is
    processed, so one malformed item fails on its own.
    """

    position = Integer(required=True, min_value=1)
    product_id = Text()
    reservation_id = Text()
    adjustment_type = Text()
    quantity = Text()
    reason = Text()
    order_id = Text()
    cart_id = Text()
    outcome = String(choices=ItemOutcome, default=ItemOutcome.PENDING.value)
    reference = Identifier()  # Adjustment or reservation id on success
    error = Text()


@stockledger.aggregate
class BulkJob:
    job_id = Identifier(identifier=True, required=True)
    batch_type = String(required=True, max_length=30, choices=BatchType)
    batch_reason = Text(required=True)
    actor_id = Identifier(required=True)
    total_items = Integer(default=0)
    succeeded = Integer(default=0)
    failed = Integer(default=0)
    item_results = HasMany(BulkItemResult)
    status = String(max_length=30, choices=BulkJobStatus, default=BulkJobStatus.RUNNING.value)
    cancel_requested = Boolean(default=False)
    chunk_size = Integer(required=True, min_value=1)
    created_at = DateTime(required=True)
    completed_at = DateTime()
    version = Integer(default=0)

    @invariant.post
    def counts_never_exceed_items(self):
        if (self.succeeded or 0) + (self.failed or 0) > (self.total_items or 0):
            raise ValidationError({"total_items": ["More item outcomes than items in the batch"]})

    @classmethod
    def start(cls, job_id, batch_type, batch_reason, actor_id, items, chunk_size, created_at):
        if not items:
            raise ValidationError({"items": ["A batch needs at least one item"]})

        job = cls(
            job_id=job_id,
            batch_type=batch_type.value,
            batch_reason=batch_reason,
            actor_id=actor_id,
            total_items=len(items),
            chunk_size=chunk_size,
            created_at=created_at,
        )
        for position, item in enumerate(items, start=1):
            fields = {name: _as_text(item.get(name)) for name in ITEM_FIELDS} if isinstance(item, Mapping) else {}
            job.add_item_results(BulkItemResult(position=position, **fields))
        return job

    @property
    def is_running(self) -> bool:
        return self.status == BulkJobStatus.RUNNING.value

    @property
    def processed(self) -> int:
        return (self.succeeded or 0) + (self.failed or 0)

    def ordered_results(self) -> list:
        return sorted(self.item_results, key=lambda result: result.position)

    def pending_results(self) -> list:
        return [result for result in self.ordered_results() if result.outcome == ItemOutcome.PENDING.value]

    def failures(self) -> list:
        return [result for result in self.ordered_results() if result.outcome == ItemOutcome.FAILED.value]

    def request_cancel(self):
        self._assert_running()
        self.cancel_requested = True

    def record_outcome(self, position, succeeded, reference=None, error=None):
        self._assert_running()
        result = next((r for r in self.item_results if r.position == position), None)
        if result is None:
            raise ValidationError({"position": [f"No item at position {position}"]})
        if result.outcome != ItemOutcome.PENDING.value:
            return

        if succeeded:
            result.outcome = ItemOutcome.SUCCEEDED.value
            result.reference = reference
            self.succeeded = (self.succeeded or 0) + 1
        else:
            result.outcome = ItemOutcome.FAILED.value
            result.error = error
            self.failed = (self.failed or 0) + 1

    def finish(self, now):
        """Close the job: cancelled, or graded by how many items succeeded."""
        self._assert_running()
        if self.cancel_requested:
            for result in self.item_results:
                if result.outcome == ItemOutcome.PENDING.value:
                    result.outcome = ItemOutcome.SKIPPED.value
            self.status = BulkJobStatus.CANCELLED.value
        elif self.failed == 0:
            self.status = BulkJobStatus.COMPLETED.value
        elif self.succeeded:
            self.status = BulkJobStatus.PARTIALLY_COMPLETED.value
        else:
            self.status = BulkJobStatus.FAILED.value
        self.completed_at = now

    def _assert_running(self):
        if not self.is_running:
            raise ValidationError({"status": [f"Job {self.job_id} is {self.status} and can no longer change"]})
