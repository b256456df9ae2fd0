from sqlalchemy import Boolean, Enum, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.ids import USER, gen_id
from app.models.base import Base, TimestampMixin
from app.models.enums import KycStatus, VerificationLevel


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id(USER))

    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)

    # written only by the verification ledger (or the full-verification override)
    verification_level: Mapped[VerificationLevel] = mapped_column(
        Enum(VerificationLevel, native_enum=False, length=20),
        nullable=False,
        default=VerificationLevel.NONE,
    )
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    kyc_status: Mapped[KycStatus] = mapped_column(
        Enum(KycStatus, native_enum=False, length=20),
        nullable=False,
        default=KycStatus.PENDING,
    )
