import secrets
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException

from app.core.config import settings


@dataclass(frozen=True)
class Reviewer:
    reviewer_id: str


async def require_admin(x_admin_key: str | None = Header(default=None)) -> None:
    expected = settings.admin_api_key.get_secret_value()
    if not x_admin_key or not secrets.compare_digest(x_admin_key.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=403, detail="Admin key required")


async def get_reviewer(
    _: None = Depends(require_admin),
    x_reviewer_id: str | None = Header(default=None),
) -> Reviewer:
    reviewer_id = (x_reviewer_id or "").strip()
    if not reviewer_id:
        raise HTTPException(status_code=401, detail="Missing X-Reviewer-Id")
    return Reviewer(reviewer_id=reviewer_id)
