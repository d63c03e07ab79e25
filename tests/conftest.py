import asyncio
import os
import tempfile
from pathlib import Path

# Point the service at a throwaway sqlite database before the app is imported
_DB_DIR = Path(tempfile.mkdtemp(prefix="pantry-tests-"))
os.environ["PANTRY_DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR / 'pantry.db'}"
os.environ["API_PASSWORD"] = "test-password"
os.environ.pop("REDIS_URL", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from pantry_api import models  # noqa: E402
from pantry_api.audit import AuditSink  # noqa: E402
from pantry_api.deps import get_engine, get_sessionmaker  # noqa: E402
from pantry_api.lifecycle import RequestLifecycle  # noqa: E402
from pantry_api.main import app  # noqa: E402

AUTH_HEADERS = {
    "Authorization": "Bearer test-password",
    "X-User-Id": "employee-1",
    "X-User-Name": "Ana Employee",
}


async def _reset_schema() -> None:
    async with get_engine().begin() as connection:
        await connection.run_sync(models.Base.metadata.drop_all)
        await connection.run_sync(models.Base.metadata.create_all)


@pytest.fixture(autouse=True)
def database():
    asyncio.run(_reset_schema())
    yield


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def session():
    async with get_sessionmaker()() as db_session:
        yield db_session


@pytest.fixture
def lifecycle(session) -> RequestLifecycle:
    return RequestLifecycle(session, AuditSink(get_sessionmaker()))


@pytest.fixture
def client() -> TestClient:
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
