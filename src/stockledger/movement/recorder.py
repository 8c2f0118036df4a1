"""MovementRecorder — appends movements and rebuilds stock from them.

The recorder has no update or delete operation. Replaying a product's
movements in ``sequence`` order reproduces its InventoryRecord, which is
what ``verify`` checks.
"""

from dataclasses import dataclass
from uuid import uuid4

from protean.utils.globals import current_domain

from stockledger.errors import InvariantViolation
from stockledger.ledger.record import weighted_average_cost
from stockledger.movement.movement import (
    INBOUND_TYPES,
    ON_HAND_TYPES,
    OUTBOUND_TYPES,
    MovementRecord,
    MovementType,
)
from stockledger.utils.clock import as_utc, utcnow
from stockledger.utils.logging import get_logger
from stockledger.utils.query import fetch_all

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReplayedPosition:
    product_id: str
    on_hand: int = 0
    reserved: int = 0
    average_unit_cost: float = 0.0
    last_cost: float | None = None
    version: int = 0

    @property
    def available(self) -> int:
        return self.on_hand - self.reserved


@dataclass(frozen=True)
class MovementSummary:
    product_id: str
    movement_count: int
    inbound: int
    outbound: int
    adjustments: int
    net_on_hand_change: int


class MovementRecorder:
    def record(
        self,
        record,
        movement_type: MovementType,
        quantity_delta: int,
        unit_cost=None,
        actor_id=None,
        reason=None,
        reference=None,
    ) -> MovementRecord:
        """Append the movement produced by the latest change to ``record``.

        Must run in the same unit of work as the record's update.
        """
        movement = MovementRecord(
            movement_id=str(uuid4()),
            product_id=str(record.product_id),
            movement_type=movement_type.value,
            quantity_delta=quantity_delta,
            unit_cost=unit_cost,
            resulting_on_hand=record.on_hand,
            resulting_reserved=record.reserved,
            sequence=record.version,
            actor_id=actor_id,
            reason=reason,
            reference=reference,
            created_at=utcnow(),
        )
        current_domain.repository_for(MovementRecord).add(movement)
        return movement

    def history(self, product_id, movement_type: MovementType | None = None) -> list[MovementRecord]:
        """Movements of a product, oldest first."""
        filters = {"product_id": str(product_id)}
        if movement_type is not None:
            filters["movement_type"] = movement_type.value
        movements = fetch_all(MovementRecord, order_by="sequence", **filters)
        return sorted(movements, key=lambda m: m.sequence)

    def replay(self, product_id) -> ReplayedPosition:
        """Rebuild a product's stock position from its movements alone."""
        on_hand = reserved = version = 0
        average_cost, last_cost = 0.0, None

        for movement in self.history(product_id):
            kind = movement.kind
            delta = movement.quantity_delta

            if kind in ON_HAND_TYPES:
                if movement.unit_cost is not None and delta >= 0:
                    average_cost = weighted_average_cost(on_hand, average_cost, delta, movement.unit_cost)
                    last_cost = round(float(movement.unit_cost), 4)
                on_hand += delta
            elif kind in (MovementType.RESERVE, MovementType.RELEASE, MovementType.EXPIRED_RESERVE):
                # Hold movements carry the change to available
                reserved -= delta
            elif kind is MovementType.SALE:
                on_hand += delta
                reserved += delta
            version = movement.sequence

        return ReplayedPosition(
            product_id=str(product_id),
            on_hand=on_hand,
            reserved=reserved,
            average_unit_cost=average_cost,
            last_cost=last_cost,
            version=version,
        )

    def verify(self, record) -> ReplayedPosition:
        """Check that the movement log reproduces ``record``.

        Raises:
            InvariantViolation: the log and the record have diverged.
        """
        replayed = self.replay(record.product_id)
        expected = {
            "on_hand": record.on_hand,
            "reserved": record.reserved,
            "average_unit_cost": record.average_unit_cost or 0.0,
            "last_cost": record.last_cost,
            "version": record.version,
        }
        mismatches = {
            key: {"record": value, "replayed": getattr(replayed, key)}
            for key, value in expected.items()
            if getattr(replayed, key) != value
        }
        if mismatches:
            logger.critical(
                "Movement log diverged from inventory record",
                product_id=str(record.product_id),
                mismatches=mismatches,
            )
            raise InvariantViolation(
                f"Movement log for {record.product_id} does not reproduce its inventory record",
                product_id=str(record.product_id),
                mismatches=mismatches,
            )
        return replayed

    def summary(self, product_id, since=None, until=None) -> MovementSummary:
        """Inbound, outbound and adjustment totals over an optional window."""
        movements = self.history(product_id)
        if since is not None:
            movements = [m for m in movements if as_utc(m.created_at) >= as_utc(since)]
        if until is not None:
            movements = [m for m in movements if as_utc(m.created_at) < as_utc(until)]

        inbound = sum(m.quantity_delta for m in movements if m.kind in INBOUND_TYPES)
        outbound = sum(-m.quantity_delta for m in movements if m.kind in OUTBOUND_TYPES)
        adjustments = sum(m.quantity_delta for m in movements if m.kind is MovementType.ADJUSTMENT)

        return MovementSummary(
            product_id=str(product_id),
            movement_count=len(movements),
            inbound=inbound,
            outbound=outbound,
            adjustments=adjustments,
            net_on_hand_change=inbound - outbound + adjustments,
        )
