"""Domain events raised by the ReservationRecord aggregate."""

from protean.fields import DateTime, Identifier, Integer, String

from stockledger.domain import stockledger


@stockledger.event(part_of="ReservationRecord")
class ReservationPlaced:
    __version__ = 1

    reservation_id = Identifier(required=True)
    product_id = Identifier(required=True)
    quantity = Integer(required=True)
    order_id = Identifier()
    cart_id = Identifier()
    expires_at = DateTime(required=True)


@stockledger.event(part_of="ReservationRecord")
class ReservationConfirmed:
    __version__ = 1

    reservation_id = Identifier(required=True)
    product_id = Identifier(required=True)
    quantity = Integer(required=True)
    order_id = Identifier()
    confirmed_at = DateTime(required=True)


@stockledger.event(part_of="ReservationRecord")
class ReservationReleased:
    __version__ = 1

    reservation_id = Identifier(required=True)
    product_id = Identifier(required=True)
    quantity = Integer(required=True)
    reason = String()
    released_at = DateTime(required=True)


@stockledger.event(part_of="ReservationRecord")
class ReservationExpired:
    """The sweeper closed an abandoned hold."""

    __version__ = 1

    reservation_id = Identifier(required=True)
    product_id = Identifier(required=True)
    quantity = Integer(required=True)
    expired_at = DateTime(required=True)


@stockledger.event(part_of="ReservationRecord")
class ReservationExtended:
    __version__ = 1

    reservation_id = Identifier(required=True)
    product_id = Identifier(required=True)
    expires_at = DateTime(required=True)
