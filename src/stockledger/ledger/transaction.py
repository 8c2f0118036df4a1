"""Optimistic concurrency for ledger writes.

Every ledger mutation is a load / apply / swap sequence executed inside one
``UnitOfWork``. ``compare_and_swap`` refuses to persist an aggregate whose
stored version moved since it was loaded, and ``atomic`` re-runs the whole
unit from a fresh read when that happens.
"""

import time
from contextvars import ContextVar

from protean.core.unit_of_work import UnitOfWork
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError
from protean.utils.globals import current_uow

from stockledger.errors import ConcurrencyConflict
from stockledger.settings import load_settings
from stockledger.utils.logging import get_logger

logger = get_logger(__name__)

_in_unit: ContextVar[bool] = ContextVar("stockledger_in_unit", default=False)


def in_unit() -> bool:
    """True inside an open unit of work, ours or one Protean opened for a handler."""
    return _in_unit.get() or bool(current_uow and current_uow.in_progress)


def stored_version(repository, identifier) -> int:
    """Version of ``identifier`` as committed, ignoring the open unit's snapshot.

    A missing record counts as version 0.
    """
    dao = repository._provider.get_dao(repository.meta_.part_of, repository._database_model)
    try:
        return dao.outside_uow().get(identifier).version or 0
    except ObjectNotFoundError:
        return 0


def _require_absent_at_commit(repository, aggregate, identifier):
    """Make the open unit's commit fail if another unit inserts ``identifier`` first.

    Protean skips the commit-time version check for rows a unit creates. The
    memory store lets a check for "no stored version" be registered before
    the insert, which turns the insert into insert-if-absent.
    """
    if not (current_uow and current_uow.in_progress):
        return
    session = current_uow.get_session(repository._provider.name)
    if hasattr(session, "record_version_check"):
        session.record_version_check(aggregate.meta_.schema_name, identifier, None)


def compare_and_swap(repository, aggregate, identifier, expected_version: int):
    """Persist ``aggregate`` only if the stored version is still ``expected_version``.

    The version is read from committed state, not from the unit's snapshot,
    so a write that landed after this unit loaded the aggregate is refused
    here. A write that lands between this check and commit is refused by
    Protean's own ``_version`` check when the unit commits. On success the
    aggregate carries ``expected_version + 1``.
    """
    persisted_version = stored_version(repository, identifier)
    if persisted_version == 0 and expected_version == 0:
        _require_absent_at_commit(repository, aggregate, identifier)

    if persisted_version != expected_version:
        raise ExpectedVersionError(
            f"{aggregate.__class__.__name__}({identifier}) is at version "
            f"{persisted_version}, expected {expected_version}"
        )

    aggregate.version = expected_version + 1
    repository.add(aggregate)
    return aggregate


def atomic(operation, *, aggregate: str, identifier: str, max_attempts=None, backoff_seconds=None):
    """Run ``operation`` in a unit of work, retrying on version conflicts.

    Calls made while a unit is already open join it; conflicts then surface
    to the outermost caller, which retries everything it did.
    """
    if in_unit():
        return operation()

    settings = load_settings()
    attempts = max_attempts or settings.ledger_max_attempts
    backoff = settings.ledger_retry_backoff_seconds if backoff_seconds is None else backoff_seconds

    for attempt in range(1, attempts + 1):
        token = _in_unit.set(True)
        try:
            with UnitOfWork():
                return operation()
        except ExpectedVersionError as exc:
            logger.warning(
                "Version conflict, retrying",
                aggregate=aggregate,
                identifier=identifier,
                attempt=attempt,
                max_attempts=attempts,
                error=str(exc),
            )
        finally:
            _in_unit.reset(token)

        if attempt < attempts and backoff:
            time.sleep(backoff * attempt)

    logger.error(
        "Retries exhausted on contended record",
        aggregate=aggregate,
        identifier=identifier,
        attempts=attempts,
    )
    raise ConcurrencyConflict(aggregate, identifier, attempts)
