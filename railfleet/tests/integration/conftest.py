from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from railfleet.apps.api.main import create_app
from railfleet.domain.models import Base
from railfleet.persistence.db import engine
from railfleet.services.chat import ChatGateway
from railfleet.tests.utils.fleet import seed_default_tenant


@pytest.fixture(autouse=True)
async def fresh_schema():
    # Every test starts from an empty schema plus the default tenant.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    await seed_default_tenant()
    yield
    # Dispose so pooled aiosqlite connections never outlive the test's event loop.
    await engine.dispose()


@pytest.fixture
async def client():
    app = create_app(chat_gateway=ChatGateway(search=None, completion=None))
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
