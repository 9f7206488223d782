import logging
from datetime import datetime
from typing import Optional

from sqlmodel import Session

from resell_core.services.cart_service import cleanup_stale_carts

logger = logging.getLogger(__name__)


def cleanup_carts(session: Session, now: Optional[datetime] = None) -> dict:
    removed = cleanup_stale_carts(session, now)
    logger.info(f"Removed {removed} stale cart items")
    return {"removed": removed}
