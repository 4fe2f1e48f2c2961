# tests/conftest.py — Shared test fixtures
import os
import uuid
import tempfile

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("UPLOAD_ROOT", tempfile.mkdtemp(prefix="foundry-uploads-"))
os.environ.pop("ENCRYPTION_KEY", None)

from models import (
    Base, User, Organisation, CanonicalSchema, Project, Source, ProcessingJob, Dataset,
    UserRole, SourceType, SourceStatus, JobStatus, OutputFormat,
)
from auth import AuthService
from database import get_db_session
from main import app


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine):
    """HTTP test client with overridden DB dependency"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ============================================================
# ORGANISATIONS & USERS
# ============================================================

async def make_org(db, name="Test Organisation", slug="test-org") -> Organisation:
    org = Organisation(id=str(uuid.uuid4()), name=name, slug=slug)
    db.add(org)
    await db.commit()
    await db.refresh(org)
    return org


async def make_user(db, org, email, role=UserRole.MEMBER, password="TestPassword123!", name="Test User") -> User:
    user = User(
        id=str(uuid.uuid4()),
        organisation_id=org.id,
        email=email,
        name=name,
        password_hash=AuthService.hash_password(password),
        role=role,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_org(db_session):
    return await make_org(db_session)


@pytest_asyncio.fixture
async def other_org(db_session):
    """A second tenant, used to check isolation"""
    return await make_org(db_session, name="Other Organisation", slug="other-org")


@pytest_asyncio.fixture
async def admin_user(db_session, test_org):
    return await make_user(
        db_session, test_org, "admin@foundry.dev", role=UserRole.ADMIN,
        password="AdminPassword123!", name="Admin User",
    )


@pytest_asyncio.fixture
async def test_user(db_session, test_org):
    return await make_user(db_session, test_org, "member@foundry.dev")


@pytest_asyncio.fixture
async def other_user(db_session, other_org):
    return await make_user(db_session, other_org, "someone@other.dev", role=UserRole.ADMIN)


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token = AuthService.token_for_user(user)
    return {"Authorization": f"Bearer {token}"}


# ============================================================
# DOMAIN ENTITIES
# ============================================================

@pytest_asyncio.fixture
async def canonical_schema(db_session):
    schema = CanonicalSchema(
        id=str(uuid.uuid4()),
        name="conversation",
        version=1,
        schema_definition={"type": "object", "properties": {"messages": {"type": "array"}}},
        schema_definition_version=1,
        description="Conversational turns",
        is_published=True,
    )
    db_session.add(schema)
    await db_session.commit()
    await db_session.refresh(schema)
    return schema


async def make_project(db, org, schema, name="Support Tickets", processing_config=None) -> Project:
    project = Project(
        id=str(uuid.uuid4()),
        organisation_id=org.id,
        canonical_schema_id=schema.id,
        name=name,
        processing_config=processing_config,
        processing_config_version=1 if processing_config is not None else None,
    )
    db.add(project)
    await db.commit()
    await db.refresh(project)
    return project


async def make_source(db, project, name="tickets.csv") -> Source:
    source = Source(
        id=str(uuid.uuid4()),
        project_id=project.id,
        name=name,
        source_type=SourceType.FILE,
        file_upload_path=f"/tmp/{name}",
        file_mime_type="text/csv",
        file_size_bytes=128,
        status=SourceStatus.CONNECTED,
    )
    db.add(source)
    await db.commit()
    await db.refresh(source)
    return source


async def make_job(db, project, status=JobStatus.QUEUED, config_snapshot=None, error_message=None) -> ProcessingJob:
    job = ProcessingJob(
        id=str(uuid.uuid4()),
        project_id=project.id,
        status=status,
        config_snapshot=config_snapshot if config_snapshot is not None else {"projectConfig": None},
        config_snapshot_version=1,
        error_message=error_message,
    )
    db.add(job)
    await db.commit()
    await db.refresh(job)
    return job


async def make_dataset(db, job, path="/tmp/missing-dataset.jsonl", output_format=OutputFormat.CONVERSATIONAL_JSONL) -> Dataset:
    dataset = Dataset(
        id=str(uuid.uuid4()),
        project_id=job.project_id,
        processing_job_id=job.id,
        name="support-conversations.jsonl",
        output_format=output_format,
        output_storage_path=path,
        record_count=10,
        file_size_bytes=2048,
        lineage_data={"processingJobId": job.id},
    )
    db.add(dataset)
    await db.commit()
    await db.refresh(dataset)
    return dataset


@pytest_asyncio.fixture
async def test_project(db_session, test_org, canonical_schema):
    return await make_project(db_session, test_org, canonical_schema, processing_config={"a": 1})
