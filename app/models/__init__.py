from app.models.base import Base  # noqa: F401

from app.models.user import User  # noqa: F401
from app.models.listing import Listing  # noqa: F401
from app.models.verification_document import VerificationDocument  # noqa: F401
from app.models.audit_log import AuditLog  # noqa: F401
from app.models.notification import Notification  # noqa: F401
from app.models.outbox import OutboxEvent  # noqa: F401
from app.models.idempotency import IdempotencyKey  # noqa: F401
