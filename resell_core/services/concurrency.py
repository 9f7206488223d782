import logging
from typing import Callable, TypeVar

from sqlalchemy import update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm.attributes import set_committed_value
from sqlmodel import Session

from resell_core.exceptions import ConcurrencyConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")


def bump_version(session: Session, obj) -> int:
    """
    Compare-and-swap the ``version`` column of a persisted row.

    Issues ``UPDATE ... SET version = v + 1 WHERE id = :id AND version = v``
    for the version the caller loaded. If another writer got there first no
    row matches and ``ConcurrencyConflict`` is raised before anything else
    on ``obj`` is changed. On success the new version is written into the
    identity map so the following ORM flush does not touch it again.
    """
    model = type(obj)
    expected = obj.version

    with session.no_autoflush:
        result = session.execute(
            update(model)
            .where(model.id == obj.id, model.version == expected)
            .values(version=expected + 1)
            .execution_options(synchronize_session=False)
        )

    if result.rowcount != 1:
        raise ConcurrencyConflict(model.__tablename__, obj.id, expected)

    set_committed_value(obj, "version", expected + 1)
    return expected + 1


def run_with_retry(session: Session, fn: Callable[[], T], attempts: int = 3) -> T:
    """
    Run a unit of work, re-running it after a rollback when it loses a race.

    ``fn`` must re-load whatever it mutates, so a retry sees the winner's
    state and fails with the proper domain error (usually InvalidTransition)
    if the move no longer applies.
    """
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except ConcurrencyConflict as exc:
            session.rollback()
            if attempt == attempts:
                raise
            logger.warning(
                f"Concurrency conflict on {exc.entity} {exc.entity_id} "
                f"(attempt {attempt}/{attempts}), retrying"
            )


def dialect_insert(session: Session):
    """``insert`` construct with ON CONFLICT support for the bound database."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Upserts are not supported on {dialect}")
