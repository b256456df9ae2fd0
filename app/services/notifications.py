from __future__ import annotations

from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import SideEffectError
from app.models.notification import Notification
from app.models.outbox import OutboxEvent

# notification types
PROPERTY_APPROVED = "PROPERTY_APPROVED"
PROPERTY_REJECTED = "PROPERTY_REJECTED"
KYC_APPROVED = "KYC_APPROVED"
KYC_REJECTED = "KYC_REJECTED"
ACCOUNT_VERIFIED = "ACCOUNT_VERIFIED"


def property_approved(title: str) -> tuple[str, str]:
    return "Property Approved", f'Your property "{title}" has been approved and is now live on the platform.'


def property_rejected(title: str, reason: str) -> tuple[str, str]:
    return "Property Rejected", f'Your property "{title}" has been rejected. Reason: {reason}'


def kyc_approved(document_type: str) -> tuple[str, str]:
    return "Document Approved", f"Your {document_type} document has been approved."


def kyc_rejected(document_type: str, reason: str) -> tuple[str, str]:
    return "Document Rejected", f"Your {document_type} document has been rejected. Reason: {reason}"


def account_verified() -> tuple[str, str]:
    return "Account Verified", "Your account has been fully verified."


class NotificationSink:
    """
    Stores the in-app Notification and an outbox event for external delivery
    (e-mail/SMS/push). Delivery itself is picked up by the outbox dispatcher,
    never awaited here. The caller owns the commit.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def send(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        payload: dict[str, Any] | None = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            payload=payload or {},
        )
        try:
            self.db.add(notification)
            await self.db.flush()

            self.db.add(
                OutboxEvent(
                    aggregate_type="notification",
                    aggregate_id=notification.id,
                    event_type="notification.created",
                    payload={
                        "notification_id": notification.id,
                        "user_id": user_id,
                        "type": type,
                    },
                    status="pending",
                )
            )
            await self.db.flush()
        except SQLAlchemyError as e:
            raise SideEffectError(f"notification send failed: {type} -> {user_id}") from e

        return notification
