from datetime import datetime
from typing import Optional

from sqlmodel import Session

from resell_core.models.sequence import DailySequence
from resell_core.services.concurrency import dialect_insert
from resell_core.utils.clock import utcnow


def next_sequence(session: Session, scope: str) -> int:
    """Atomically increment and return the counter for ``scope``."""
    table = DailySequence.__table__
    stmt = dialect_insert(session)(table).values(scope=scope, value=1)
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.scope],
        set_={"value": table.c.value + 1},
    ).returning(table.c.value)
    return session.execute(stmt).scalar_one()


def next_number(session: Session, prefix: str, at: Optional[datetime] = None, width: int = 5) -> str:
    """ORD2026101900001 style identifiers, restarting every day per prefix."""
    day = (at or utcnow()).strftime("%Y%m%d")
    scope = f"{prefix}{day}"
    return f"{scope}{next_sequence(session, scope):0{width}d}"


def next_order_no(session: Session, at: Optional[datetime] = None) -> str:
    return next_number(session, "ORD", at)


def next_return_no(session: Session, at: Optional[datetime] = None) -> str:
    return next_number(session, "RET", at)


def next_withdrawal_no(session: Session, at: Optional[datetime] = None) -> str:
    return next_number(session, "WD", at)
