"""
Pytest configuration and fixtures for Pricey tests.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.database import Base, get_db, ensure_generic_retailer
from api.main import app, retailer_cache
from api.repository import ScrapeStore

from fakes import RecordingSleep


# Create an in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    """Override the get_db dependency for testing."""
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session):
    """Create a test client with database override."""
    app.dependency_overrides[get_db] = override_get_db
    Base.metadata.create_all(bind=engine)
    retailer_cache.clear()

    # Use TestClient directly without context manager so the lifespan
    # (real database, browser shutdown) does not run
    test_client = TestClient(app)
    yield test_client

    app.dependency_overrides.clear()
    retailer_cache.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db_session):
    """Persistence collaborator bound to the test session."""
    return ScrapeStore(db_session)


@pytest.fixture
def generic_retailer(db_session):
    """The generic fallback retailer with its universal selectors."""
    return ensure_generic_retailer(db_session)


@pytest.fixture
def sample_retailer(store, generic_retailer):
    """A specific retailer with one price and one title selector group."""
    retailer_id = store.add_retailer(
        name="Target",
        domain="target.com",
        url_patterns=[r"target\.com/p/"],
        config={"headers": {"X-Test": "1"}, "delays": {"navigation": 0, "extraction": 0}},
        price_selectors=['[data-test="product-price"]', ".price"],
        title_selectors=['[data-test="product-title"]', "h1"],
    )
    return store.get_retailer_by_id(retailer_id)


@pytest.fixture
def sleep():
    """Awaitable sleep that records delays instead of waiting."""
    return RecordingSleep()
