# tests/conftest.py
import pytest
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["LOG_LEVEL"] = "WARNING"

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

# Import app and global variables
from app.main import app, get_engine, get_db, get_cache
from app.database import Base, register_sqlite_listener
from app.cache import CacheError
from app.auth import create_access_token, hash_password
from app.schemas import Role
from app.store import UserStore

# A single in-memory SQLite database shared by every connection of the test engine
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
register_sqlite_listener(test_engine)

TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

# Hashing is slow, so every test user shares one password
TEST_PASSWORD = "password123"
TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)


class FakeCache:
    """In-memory stand-in for RedisCache that records TTLs and can simulate outages."""

    def __init__(self):
        self.data = {}
        self.ttls = {}
        self.fail_reads = False
        self.fail_writes = False
        self.closed = False

    def get(self, key):
        if self.fail_reads:
            raise CacheError("cache unavailable")
        return self.data.get(key)

    def set(self, key, value, ttl):
        if self.fail_writes:
            raise CacheError("cache unavailable")
        self.data[key] = value
        self.ttls[key] = ttl

    def close(self):
        self.closed = True


@pytest.fixture(scope="function")
def db_session():
    """
    Creates a fresh database session for a single test.
    """
    Base.metadata.create_all(bind=test_engine)

    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()
        # Drop tables to clean up
        Base.metadata.drop_all(bind=test_engine)

@pytest.fixture(scope="function")
def cache():
    return FakeCache()

@pytest.fixture(scope="function")
def client(db_session, cache):
    """
    Overrides the dependency injection to use the test database and fake cache.
    """
    def get_test_db_override():
        yield db_session

    def get_test_engine_override():
        yield test_engine

    app.dependency_overrides[get_db] = get_test_db_override
    app.dependency_overrides[get_engine] = get_test_engine_override
    app.dependency_overrides[get_cache] = lambda: cache

    # TestClient runs background tasks synchronously
    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()

@pytest.fixture(scope="function")
def make_user(db_session):
    """Factory creating a user directly in the store."""
    users = UserStore(db_session)
    counter = {"n": 0}

    def _make_user(role=Role.USER, name=None):
        counter["n"] += 1
        n = counter["n"]
        return users.create(name or f"User {n}", f"user{n}@example.com", TEST_PASSWORD_HASH, role)

    return _make_user

def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user)}"}
