import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("STORAGE_ENDPOINT_URL", "https://storage.test")
os.environ.setdefault("STORAGE_ACCESS_KEY_ID", "test-access-key")
os.environ.setdefault("STORAGE_SECRET_ACCESS_KEY", "test-secret")
os.environ.setdefault("STORAGE_BUCKET_NAME", "homebase")
os.environ.setdefault("REDIS_HOST", "127.0.0.1")
os.environ.setdefault("REDIS_PORT", "6399")

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

# FORCE model registration
import homebase.models  # noqa: E402,F401
from homebase.auth import create_access_token  # noqa: E402
from homebase.database import Base, get_db  # noqa: E402
from homebase.main import app  # noqa: E402
from homebase.models import User  # noqa: E402
from homebase.rate_limiter import memory_cache  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def override_db(session_factory):
    def _get_test_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_test_db
    memory_cache.clear()
    yield
    app.dependency_overrides.clear()
    memory_cache.clear()


@pytest.fixture
def client():
    return TestClient(app)


def create_user(db, email, role, name=None, **extra):
    user = User(email=email, role=role, name=name, **extra)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def contractor(db):
    return create_user(db, "pro@example.com", "contractor", name="Acme Plumbing")


@pytest.fixture
def other_contractor(db):
    return create_user(db, "rival@example.com", "contractor", name="Rival Roofing")


@pytest.fixture
def homeowner(db):
    return create_user(db, "jane@example.com", "homeowner", name="Jane Doe")


@pytest.fixture
def other_homeowner(db):
    return create_user(db, "sam@example.com", "homeowner", name="Sam Smith")


def api_client(user):
    """HomeBaseClient wired to the app in-process"""
    from homebase.client.api import HomeBaseClient

    return HomeBaseClient(
        "http://testserver",
        token=create_access_token(user.id),
        transport=httpx.ASGITransport(app=app),
    )


def storage_transport(fail_on=(), ip="203.0.113.7", ip_status=200):
    """
    Fake object storage and IP lookup.

    PUTs whose body is in ``fail_on`` get a 500; everything else is stored.
    Every request is recorded on ``transport.requests``.
    """
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.method == "PUT":
            if request.content in fail_on:
                return httpx.Response(500, text="storage unavailable")
            return httpx.Response(200)
        if request.url.host == "api.ipify.org":
            if ip_status != 200:
                return httpx.Response(ip_status)
            return httpx.Response(200, json={"ip": ip})
        return httpx.Response(404)

    transport = httpx.MockTransport(handler)
    transport.requests = requests
    return transport
