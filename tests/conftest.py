import os
import uuid
from types import SimpleNamespace
from typing import AsyncGenerator, Callable, Dict, Optional

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.auth.security import create_access_token
from app.core.models import Grade, School, Student
from app.db.session import Base, get_db
from app.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture()
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh in-memory database per test. Every request gets its own session on it."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, future=True, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield factory
    app.dependency_overrides.pop(get_db, None)
    await engine.dispose()


@pytest.fixture()
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
async def client(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def _seed_school(factory: async_sessionmaker, name: str, grades: Dict[str, list]) -> SimpleNamespace:
    async with factory() as session:
        school = School(name=name)
        session.add(school)
        await session.flush()
        out = SimpleNamespace(id=school.id, grades={}, students={})
        for level, (grade_name, students) in enumerate(grades.items(), start=1):
            grade = Grade(tenant_id=school.id, name=grade_name, level=level)
            session.add(grade)
            await session.flush()
            out.grades[grade_name] = grade.id
            for full_name in students:
                first, _, last = full_name.partition(" ")
                student = Student(tenant_id=school.id, grade_id=grade.id, first_name=first, last_name=last or None)
                session.add(student)
                await session.flush()
                out.students[full_name] = student.id
        await session.commit()
    return out


@pytest.fixture()
async def school(session_factory: async_sessionmaker) -> SimpleNamespace:
    """Greenwood High: Grade 3 with two students, Grade 4 with one, Grade 5 empty."""
    return await _seed_school(
        session_factory,
        "Greenwood High",
        {
            "Grade 3": ["Asha Rao", "Ravi Kumar"],
            "Grade 4": ["Meera Nair"],
            "Grade 5": [],
        },
    )


@pytest.fixture()
async def other_school(session_factory: async_sessionmaker) -> SimpleNamespace:
    return await _seed_school(session_factory, "Riverside Public", {"Grade 3": ["Kiran Das"]})


@pytest.fixture()
def make_headers() -> Callable[..., Dict[str, str]]:
    def _make(tenant_id: uuid.UUID, role: str = "ADMIN", permissions: Optional[dict] = None) -> Dict[str, str]:
        token = create_access_token(
            subject={
                "user_id": str(uuid.uuid4()),
                "tenant_id": str(tenant_id),
                "role": role,
                "permissions": permissions or {},
                "name": "Test User",
            }
        )
        return {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture()
def admin_headers(school: SimpleNamespace, make_headers) -> Dict[str, str]:
    return make_headers(school.id)
