"""
Shared pytest fixtures — in‑memory SQLite + FastAPI TestClient.
"""
import os
import tempfile

# The app engine and data dir are created at import time; keep both off disk
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["DATA_DIR"] = os.path.join(tempfile.gettempdir(), "receiptsplit-tests")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from receiptsplit.database import Base, get_db  # noqa: E402
from receiptsplit.models import ReceiptModel  # noqa: E402,F401  register model
from receiptsplit.main import app  # noqa: E402

# StaticPool ensures all connections share the same in-memory database
_ENGINE = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
_Session = sessionmaker(autocommit=False, autoflush=False, bind=_ENGINE)

OWNER = {"X-Real-IP": "127.0.0.1"}


@pytest.fixture(autouse=True)
def _reset_tables():
    Base.metadata.create_all(bind=_ENGINE)
    yield
    Base.metadata.drop_all(bind=_ENGINE)


@pytest.fixture()
def db():
    session = _Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(db):
    def _override():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = _override
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def owner_headers():
    return dict(OWNER)


@pytest.fixture()
def anyio_backend():
    return "asyncio"
