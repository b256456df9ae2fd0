from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

log = logging.getLogger(__name__)


async def fire_and_continue(db: AsyncSession, what: str, effect: Callable[[], Awaitable[Any]]) -> bool:
    """
    Run one post-commit side effect (notification, audit) in its own unit of work.

    A failure is logged and rolled back, never re-raised and never retried here:
    the state change it follows has already been committed and stands.
    """
    try:
        await effect()
        await db.commit()
        return True
    except Exception:
        log.exception("side effect failed: %s", what)
        await db.rollback()
        return False
