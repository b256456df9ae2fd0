from fastapi import HTTPException

from app.core.errors import ModerationError


def http_error(e: ModerationError) -> HTTPException:
    return HTTPException(status_code=e.http_status, detail=e.as_detail())
