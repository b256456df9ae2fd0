from pydantic import BaseModel, Field

from app.models.enums import DocumentStatus, KycStatus, ReviewOutcome, VerificationLevel


class ReviewIn(BaseModel):
    outcome: ReviewOutcome
    reason: str | None = Field(default=None, max_length=2000)


class ReviewOut(BaseModel):
    document_id: str
    status: DocumentStatus
    user_id: str
    previous_level: VerificationLevel
    verification_level: VerificationLevel
    is_verified: bool


class TrustTierOut(BaseModel):
    user_id: str
    previous_level: VerificationLevel
    verification_level: VerificationLevel
    is_verified: bool
    kyc_status: KycStatus
