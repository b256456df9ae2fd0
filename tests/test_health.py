import pytest
import httpx
from app.main import app

@pytest.mark.asyncio
async def test_health():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        r = await ac.get("/v1/health")
        assert r.status_code == 200
        assert r.json() == {"status": "ok", "service": "moderation-api"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "method,path",
    [
        ("GET", "/v1/admin/moderation/listings"),
        ("POST", "/v1/admin/moderation/listings/decide"),
        ("POST", "/v1/admin/verification/documents/doc_1/review"),
        ("POST", "/v1/admin/verification/users/usr_1/full-verification"),
    ],
)
async def test_admin_routes_are_mounted(method, path):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        r = await ac.request(method, path)
    # mounted and guarded, so never 404/405
    assert r.status_code in (401, 403, 422)
