"""AdjustmentRecord aggregate — an audited manual stock correction."""

from enum import Enum

from protean.fields import DateTime, Identifier, Integer, String, Text

from stockledger.domain import stockledger


class AdjustmentType(Enum):
    RECOUNT = "Recount"
    DAMAGE = "Damage"
    THEFT = "Theft"
    EXPIRY = "Expiry"
    CORRECTION = "Correction"

    @classmethod
    def parse(cls, value) -> "AdjustmentType":
        """Accept a member, its name or its value."""
        if isinstance(value, cls):
            return value
        for member in cls:
            if value in (member.name, member.value):
                return member
        raise ValueError(value)


# Shrinkage can only take stock away
REDUCING_TYPES = {AdjustmentType.DAMAGE, AdjustmentType.THEFT, AdjustmentType.EXPIRY}


@stockledger.aggregate
class AdjustmentRecord:
    adjustment_id = Identifier(identifier=True, required=True)
    product_id = Identifier(required=True)
    adjustment_type = String(required=True, max_length=20, choices=AdjustmentType)
    quantity = Integer(required=True)
    reason = Text(required=True)
    actor_id = Identifier(required=True)
    movement_sequence = Integer(required=True)
    resulting_on_hand = Integer(required=True, min_value=0)
    created_at = DateTime(required=True)
