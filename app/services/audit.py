from __future__ import annotations

from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import SideEffectError
from app.models.audit_log import AuditLog

# action tags
APPROVE_PROPERTY = "APPROVE_PROPERTY"
REJECT_PROPERTY = "REJECT_PROPERTY"
FEATURE_PROPERTY = "FEATURE_PROPERTY"
VERIFY_USER_KYC = "VERIFY_USER_KYC"
VERIFY_USER = "VERIFY_USER"

# target types
TARGET_PROPERTY = "PROPERTY"
TARGET_USER = "USER"


class AuditSink:
    """Appends AuditLog rows. The caller owns the commit."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        action: str,
        actor_id: str | None,
        target_type: str | None,
        target_id: str | None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        self.db.add(AuditLog(
            actor_id=actor_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            detail=detail or {},
        ))
        try:
            await self.db.flush()
        except SQLAlchemyError as e:
            raise SideEffectError(f"audit append failed: {action} {target_type}/{target_id}") from e
