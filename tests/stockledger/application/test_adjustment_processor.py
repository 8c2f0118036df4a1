"""Application tests for AdjustmentProcessor.

Covers:
- adjust: DAMAGE writes a DAMAGE movement, other types an ADJUSTMENT movement
- adjust: NegativeStock leaves the record and the audit trail untouched
- validation of reason, actor, sign and type
- recount against a physical count
- history
"""

import pytest
from protean.exceptions import ValidationError

from stockledger.adjustment.adjustment import AdjustmentType
from stockledger.errors import NegativeStock
from stockledger.movement.movement import MovementType

ADMIN = "admin-001"


class TestAdjust:
    def test_damage_then_oversized_damage(self, processor, ledger, recorder, stocked):
        product_id = stocked(on_hand=5)

        adjustment = processor.adjust(product_id, AdjustmentType.DAMAGE, -2, "crushed in transit", ADMIN)
        assert adjustment.resulting_on_hand == 3
        assert ledger.get_record(product_id).on_hand == 3

        with pytest.raises(NegativeStock):
            processor.adjust(product_id, AdjustmentType.DAMAGE, -10, "crushed in transit", ADMIN)

        assert ledger.get_record(product_id).on_hand == 3
        assert len(processor.history(product_id)) == 1
        assert len(recorder.history(product_id)) == 2

    def test_damage_is_recorded_as_a_damage_movement(self, processor, recorder, stocked):
        product_id = stocked(on_hand=5)
        adjustment = processor.adjust(product_id, AdjustmentType.DAMAGE, -1, "dropped", ADMIN)

        movement = recorder.history(product_id)[-1]
        assert movement.movement_type == MovementType.DAMAGE.value
        assert movement.quantity_delta == -1
        assert movement.reference == adjustment.adjustment_id
        assert movement.actor_id == ADMIN
        assert movement.reason == "dropped"
        assert movement.sequence == adjustment.movement_sequence

    def test_correction_is_recorded_as_an_adjustment_movement(self, processor, recorder, stocked):
        product_id = stocked(on_hand=5)
        processor.adjust(product_id, AdjustmentType.CORRECTION, 3, "found a misplaced carton", ADMIN)

        movement = recorder.history(product_id)[-1]
        assert movement.movement_type == MovementType.ADJUSTMENT.value
        assert movement.resulting_on_hand == 8

    def test_cannot_take_reserved_units(self, processor, ledger, stocked):
        product_id = stocked(on_hand=5)
        ledger.try_reserve(product_id, 4)

        with pytest.raises(NegativeStock) as exc:
            processor.adjust(product_id, AdjustmentType.THEFT, -2, "missing from shelf", ADMIN)

        assert exc.value.reserved == 4
        levels = ledger.get_available(product_id)
        assert (levels.on_hand, levels.reserved, levels.available) == (5, 4, 1)

    def test_type_accepts_name_or_value(self, processor, stocked):
        product_id = stocked(on_hand=5)
        assert processor.adjust(product_id, "EXPIRY", -1, "past date", ADMIN).adjustment_type == "Expiry"
        assert processor.adjust(product_id, "Theft", -1, "stolen", ADMIN).adjustment_type == "Theft"

    def test_unknown_product(self, processor):
        from protean.exceptions import ObjectNotFoundError

        with pytest.raises(ObjectNotFoundError):
            processor.adjust("prod-missing", AdjustmentType.CORRECTION, 1, "typo", ADMIN)


class TestValidation:
    def test_reason_and_actor_are_required(self, processor, stocked):
        product_id = stocked()
        with pytest.raises(ValidationError) as exc:
            processor.adjust(product_id, AdjustmentType.CORRECTION, 1, "  ", None)
        assert set(exc.value.messages) == {"reason", "actor_id"}

    def test_shrinkage_must_be_negative(self, processor, stocked):
        product_id = stocked()
        with pytest.raises(ValidationError) as exc:
            processor.adjust(product_id, AdjustmentType.DAMAGE, 2, "crushed", ADMIN)
        assert exc.value.messages == {"quantity": ["Damage adjustments must be negative"]}

    def test_zero_quantity(self, processor, stocked):
        product_id = stocked()
        with pytest.raises(ValidationError) as exc:
            processor.adjust(product_id, AdjustmentType.CORRECTION, 0, "nothing", ADMIN)
        assert "quantity" in exc.value.messages

    def test_unknown_type(self, processor, stocked):
        product_id = stocked()
        with pytest.raises(ValidationError) as exc:
            processor.adjust(product_id, "Vandalism", -1, "graffiti", ADMIN)
        assert exc.value.messages["adjustment_type"] == ["Unknown adjustment type: Vandalism"]

    def test_rejected_adjustment_writes_nothing(self, processor, ledger, recorder, stocked):
        product_id = stocked(on_hand=5)
        with pytest.raises(ValidationError):
            processor.adjust(product_id, AdjustmentType.CORRECTION, 1, "", ADMIN)
        assert ledger.get_record(product_id).version == 1
        assert len(recorder.history(product_id)) == 1
        assert processor.history(product_id) == []


class TestRecount:
    def test_count_below_on_hand(self, processor, ledger, stocked):
        product_id = stocked(on_hand=10)
        adjustment = processor.recount(product_id, 7, "cycle count", ADMIN)

        assert adjustment.adjustment_type == AdjustmentType.RECOUNT.value
        assert adjustment.quantity == -3
        assert ledger.get_record(product_id).on_hand == 7

    def test_count_above_on_hand(self, processor, ledger, stocked):
        product_id = stocked(on_hand=10)
        assert processor.recount(product_id, 12, "cycle count", ADMIN).quantity == 2
        assert ledger.get_record(product_id).on_hand == 12

    def test_matching_count_changes_nothing(self, processor, ledger, stocked):
        product_id = stocked(on_hand=10)
        assert processor.recount(product_id, 10, "cycle count", ADMIN) is None
        assert ledger.get_record(product_id).version == 1

    def test_negative_count_is_rejected(self, processor, stocked):
        product_id = stocked()
        with pytest.raises(ValidationError):
            processor.recount(product_id, -1, "cycle count", ADMIN)

    def test_count_below_reserved(self, processor, ledger, stocked):
        product_id = stocked(on_hand=10)
        ledger.try_reserve(product_id, 6)
        with pytest.raises(NegativeStock):
            processor.recount(product_id, 5, "cycle count", ADMIN)


class TestHistory:
    def test_oldest_first_per_product(self, processor, stocked):
        product_id = stocked(on_hand=10)
        other = stocked(on_hand=10)
        processor.adjust(product_id, AdjustmentType.DAMAGE, -1, "first", ADMIN)
        processor.adjust(other, AdjustmentType.DAMAGE, -1, "elsewhere", ADMIN)
        processor.adjust(product_id, AdjustmentType.CORRECTION, 2, "second", ADMIN)

        history = processor.history(product_id)

        assert [adjustment.reason for adjustment in history] == ["first", "second"]
        assert [adjustment.movement_sequence for adjustment in history] == [2, 3]
