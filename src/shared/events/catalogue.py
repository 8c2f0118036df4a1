"""Event contract for the catalogue's product-creation event.

The catalogue publishes ``ProductCreated`` on its ``catalogue::product``
stream. The stock ledger registers this class as an external event with the
matching ``__type__`` string so the stream deserializes into it.
"""

from protean.core.event import BaseEvent
from protean.fields import DateTime, Identifier, String


class ProductCreated(BaseEvent):
    """A new product was added to the catalogue."""

    __version__ = 1

    product_id = Identifier(required=True)
    sku = String(required=True)
    title = String(required=True)
    status = String(required=True)
    created_at = DateTime(required=True)
