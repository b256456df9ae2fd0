from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from app.core.ids import DOCUMENT, gen_id
from app.models.base import Base
from app.models.enums import DocumentStatus


class VerificationDocument(Base):
    __tablename__ = "verification_documents"
    __table_args__ = (
        Index("ix_verification_documents_user_type", "user_id", "document_type"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id(DOCUMENT))
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)

    # e.g. "NATIONAL_ID", "PASSPORT", "UTILITY_BILL"
    document_type: Mapped[str] = mapped_column(String(60), nullable=False)
    document_url: Mapped[str] = mapped_column(String(500), nullable=False)
    document_number: Mapped[str | None] = mapped_column(String(120), nullable=True)

    verification_status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus, native_enum=False, length=20),
        nullable=False,
        default=DocumentStatus.PENDING,
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # set when a resubmission of the same type replaces this record
    superseded_by: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    @property
    def is_active(self) -> bool:
        return self.superseded_by is None
