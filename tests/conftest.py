import os

# The app engine is never used in tests; each test binds its own engine below
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ["EVENT_BACKEND"] = "none"
os.environ["DB_AUTO_CREATE"] = "false"

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from bookstore.db import Base, get_db
from bookstore.main import app
from bookstore.models import Book, Category, User
from bookstore.security import Caller, Role, hash_password, make_access_token


@pytest.fixture
def test_engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'bookstore.db'}", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    del app.dependency_overrides[get_db]


def _make_user(db, username, email, role=Role.CUSTOMER, password="secret123"):
    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        first_name=username.capitalize(),
        last_name="Tester",
        role=role.value,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def customer(db):
    return _make_user(db, "alice", "alice@example.com")


@pytest.fixture
def other_customer(db):
    return _make_user(db, "bob", "bob@example.com")


@pytest.fixture
def admin(db):
    return _make_user(db, "root", "admin@example.com", role=Role.ADMIN)


def _caller_for(user) -> Caller:
    return Caller(
        user_id=user.id,
        username=user.username,
        email=user.email,
        role=Role(user.role),
        full_name=user.full_name,
    )


def _auth_header(user) -> dict:
    token, _ = make_access_token(
        user_id=user.id,
        username=user.username,
        email=user.email,
        role=Role(user.role),
        full_name=user.full_name,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def caller_for():
    return _caller_for


@pytest.fixture
def auth_header():
    return _auth_header


@pytest.fixture
def category(db):
    c = Category(name="Fiction", description="Novels and stories")
    db.add(c)
    db.commit()
    db.refresh(c)
    return c


@pytest.fixture
def books(db, category):
    """Two books: 10.00 x5 and 25.50 x2."""
    items = [
        Book(
            title="The Hobbit",
            author="J.R.R. Tolkien",
            category_id=category.id,
            price=Decimal("10.00"),
            stock_quantity=5,
        ),
        Book(
            title="Dune",
            author="Frank Herbert",
            price=Decimal("25.50"),
            stock_quantity=2,
        ),
    ]
    db.add_all(items)
    db.commit()
    for b in items:
        db.refresh(b)
    return items
