import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from data.database import Base, get_db
from main import app
from services.cache import get_cache_client, get_mock_cache_client
from config import config

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
config.valid_tokens = ["fake-client-token"]

engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Dependency override for DB
def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db

# One in-memory cache shared by the app and the tests
TEST_CACHE_CLIENT = get_mock_cache_client()

def override_get_cache_client():
    return TEST_CACHE_CLIENT

app.dependency_overrides[get_cache_client] = override_get_cache_client

@pytest.fixture(autouse=True)
def setup_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    TEST_CACHE_CLIENT.backend._cache.clear()
    yield

@pytest.fixture
def db_session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

@pytest.fixture
def cache_client():
    return TEST_CACHE_CLIENT

@pytest.fixture
def auth_headers():
    return {"Authorization": "Bearer fake-client-token"}

@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c

@pytest.fixture
def session_local():
    return TestingSessionLocal
