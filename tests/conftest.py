import os
from datetime import datetime, timedelta, timezone
from typing import Generator

# Override settings for tests before importing app modules
TEST_DATABASE_URL = "sqlite:///:memory:"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["JWT_SECRET"] = "test-secret-key-for-testing-only"
os.environ.pop("ADMIN_EMAIL", None)
os.environ.pop("ADMIN_PASSWORD", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from charity_auction import main
from charity_auction.main import app
from charity_auction.models import Auction, Bid, User
from charity_auction.models.database import Base, get_db
from charity_auction.services.auth_tokens import get_password_hash

# Create test database engine
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "adminpassword123"


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db_session = TestSessionLocal()
    try:
        yield db_session
    finally:
        db_session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def client(db: Session, monkeypatch) -> Generator[TestClient, None, None]:
    """Create a test client running the app lifespan against the test database."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    monkeypatch.setattr(main, "SessionLocal", TestSessionLocal)
    monkeypatch.setattr(main, "init_db", lambda: None)
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def make_auction(db: Session, **overrides) -> Auction:
    values = {
        "title": "Signed football jersey",
        "description": "Donated by the team captain",
        "min_bid_amount": 500,
        "end_time": datetime.now(timezone.utc) + timedelta(days=1),
        "is_active": True,
        "image_urls": ["https://cdn.example.com/auctions/jersey.jpg"],
    }
    values.update(overrides)
    auction = Auction(**values)
    db.add(auction)
    db.commit()
    db.refresh(auction)
    return auction


def make_bid(db: Session, auction: Auction, amount: int, name: str = "Ayşe Yılmaz") -> Bid:
    bid = Bid(
        auction_id=auction.id,
        bid_amount=amount,
        bidder_name=name,
        bidder_phone="0532 123 45 67",
    )
    db.add(bid)
    db.commit()
    db.refresh(bid)
    return bid


@pytest.fixture
def test_auction(db: Session) -> Auction:
    """Create the active auction."""
    return make_auction(db)


@pytest.fixture
def ended_auction(db: Session) -> Auction:
    """Create an auction whose end time has passed."""
    return make_auction(
        db,
        title="Framed painting",
        is_active=False,
        end_time=datetime.now(timezone.utc) - timedelta(hours=1),
    )


@pytest.fixture
def live_client(client: TestClient, test_auction: Auction) -> TestClient:
    """Client whose read model tracks ``test_auction``."""
    response = client.post("/api/auction/active/refresh")
    assert response.status_code == 200
    return client


@pytest.fixture
def test_admin(db: Session) -> User:
    """Create an administrator."""
    user = User(email=ADMIN_EMAIL, hashed_password=get_password_hash(ADMIN_PASSWORD))
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def auth_token(client: TestClient, test_admin: User) -> str:
    """Get auth token for the administrator."""
    response = client.post(
        "/api/admin/login",
        json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD},
    )
    assert response.status_code == 200
    return response.json()["accessToken"]


@pytest.fixture
def auth_headers(auth_token: str) -> dict[str, str]:
    """Get auth headers with token."""
    return {"Authorization": f"Bearer {auth_token}"}


def bid_payload(amount: int, name: str = "Ayşe Yılmaz", phone: str = "0532 123 45 67") -> dict:
    return {"bidder_name": name, "bidder_phone": phone, "bid_amount": amount}
