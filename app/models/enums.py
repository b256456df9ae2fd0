import enum


class ModerationStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Priority(str, enum.Enum):
    NONE = "NONE"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class VerificationLevel(str, enum.Enum):
    NONE = "NONE"
    PARTIAL = "PARTIAL"
    VERIFIED = "VERIFIED"
    FULL_VERIFIED = "FULL_VERIFIED"


class KycStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_REVIEW = "IN_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"


class DocumentStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ModerationAction(str, enum.Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class ReviewOutcome(str, enum.Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


# levels that count as "verified" for queue filters and the tier-based rule
VERIFIED_LEVELS = frozenset({VerificationLevel.VERIFIED, VerificationLevel.FULL_VERIFIED})
