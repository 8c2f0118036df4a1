"""Stock ledger bounded context — reservations and stock consistency.

Owns the authoritative per-product stock record, the reservation lifecycle,
the append-only movement history, manual adjustments and bulk updates.
"""

from protean.domain import Domain

from stockledger.utils.logging import configure_logging, get_logger

# Configure logging for the application
configure_logging()

logger = get_logger(__name__)

# Domain Composition Root
stockledger = Domain(name="stockledger")
