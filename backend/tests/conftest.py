# tests/conftest.py - Shared test fixtures
import os
import tempfile

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["FILE_STORAGE_ROOT"] = tempfile.mkdtemp(prefix="worktrack-attachments-")

from models import Base, User, UserRole, TaskStatus
from auth import AuthService, CurrentUser
from attachments import LocalAttachmentStore
from routers.common import get_service
from service import WorkTrackService
from main import app


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
def attachment_store(tmp_path):
    return LocalAttachmentStore(root=str(tmp_path / "attachments"), base_url="http://files.test")


@pytest.fixture
def service(session_factory, attachment_store):
    return WorkTrackService(session_factory, attachment_store)


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, attachment_store):
    """HTTP test client with the service bound to the test database"""
    app.dependency_overrides[get_service] = lambda: WorkTrackService(session_factory, attachment_store)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _make_user(service, display_name: str, role: UserRole) -> CurrentUser:
    handle = display_name.split()[0].lower()
    record = await service.directory.add_user(
        User(email=f"{handle}@worktrack.dev", display_name=display_name, role=role)
    )
    return CurrentUser(id=record.id, display_name=display_name, role=role.value)


@pytest_asyncio.fixture
async def owner(service):
    """Supervisor who owns the project and its tasks"""
    return await _make_user(service, "Olivia Owner", UserRole.SUPERVISOR)


@pytest_asyncio.fixture
async def supervisor(service):
    return await _make_user(service, "Sam Supervisor", UserRole.SUPERVISOR)


@pytest_asyncio.fixture
async def member(service):
    return await _make_user(service, "Mia Member", UserRole.MEMBER)


@pytest_asyncio.fixture
async def stranger(service):
    """Member with no assignments anywhere"""
    return await _make_user(service, "Stan Stranger", UserRole.MEMBER)


@pytest_asyncio.fixture
async def admin(service):
    return await _make_user(service, "Ada Admin", UserRole.ADMIN)


@pytest_asyncio.fixture
async def project(service, owner):
    return await service.create_project(owner, "Riverside Renovation")


@pytest_asyncio.fixture
async def main_task(service, owner, project):
    result = await service.create_task(owner, project.id, "Kitchen")
    return result.record


async def make_sub_task(service, owner, main_task, name, assignees=(), status=TaskStatus.TODO):
    """Create a sub-task under ``main_task`` and return the record"""
    result = await service.create_task(
        owner, main_task.project_id, name,
        parent_id=main_task.id,
        assignee_ids=[a.id for a in assignees],
        status=status,
    )
    return result.record


def get_auth_headers(user: CurrentUser) -> dict:
    """Generate auth headers for an actor"""
    token_data = {
        "sub": user.id,
        "role": user.role,
        "name": user.display_name,
    }
    token = AuthService.create_access_token(token_data)
    return {"Authorization": f"Bearer {token}"}
