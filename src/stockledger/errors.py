"""Typed failures raised by the stock ledger.

Business outcomes that are expected during normal operation (insufficient
stock, transitions on closed reservations) are returned as values from
``stockledger.outcomes``; the exceptions here mark conditions the caller
must not ignore.

    StockLedgerError
    +-- ConcurrencyConflict   retries exhausted on a contended record
    +-- InvariantViolation    ledger state and caller discipline disagree

    protean ValidationError
    +-- NegativeStock         a change would push on-hand below reserved
"""

from protean.exceptions import ValidationError


class StockLedgerError(Exception):
    """Base class for ledger failures. ``code`` is stable and machine-readable."""

    code = "STOCK_LEDGER_ERROR"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, **self.details}


class ConcurrencyConflict(StockLedgerError):
    code = "CONCURRENCY_CONFLICT"

    def __init__(self, aggregate: str, identifier: str, attempts: int):
        super().__init__(
            f"{aggregate}({identifier}) kept changing underneath the transaction; gave up after {attempts} attempts",
            aggregate=aggregate,
            identifier=identifier,
            attempts=attempts,
        )
        self.identifier = identifier
        self.attempts = attempts


class InvariantViolation(StockLedgerError):
    code = "INVARIANT_VIOLATION"


class NegativeStock(ValidationError):
    """An on-hand change was rejected because it would corrupt the record."""

    code = "NEGATIVE_STOCK"

    def __init__(self, product_id: str, on_hand: int, reserved: int, delta: int):
        self.product_id = product_id
        self.on_hand = on_hand
        self.reserved = reserved
        self.delta = delta
        super().__init__(
            {
                "quantity": [
                    f"Change of {delta} would leave on-hand at {on_hand + delta} "
                    f"with {reserved} reserved for product {product_id}"
                ]
            }
        )


def describe_error(exc) -> str:
    """One line per failing field for validation errors, the message otherwise."""
    messages = getattr(exc, "messages", None)
    if isinstance(messages, dict) and messages:
        return "; ".join(f"{key}: {', '.join(str(m) for m in value)}" for key, value in messages.items())
    return getattr(exc, "message", None) or str(exc)
