"""Pytest configuration and shared fixtures."""

import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key-not-for-production"
os.environ["GEMINI_API_KEY"] = "test-gemini-key"
os.environ["INGEST_API_KEY"] = "test-ingest-key"
os.environ["STORAGE_BACKEND"] = "local"

import json
from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from ledgerlens.core.database import Base, SessionLocal, engine
from ledgerlens.main import app
from ledgerlens.models.statement import Statement
from ledgerlens.schemas.user import UserCreate
from ledgerlens.services import auth_service
from ledgerlens.services.llm_client import GeminiClient, get_llm_client
from ledgerlens.services.storage_service import LocalStorage, get_storage
from ledgerlens.services.transaction_service import build_transaction


class FakeLLMClient(GeminiClient):
    """GeminiClient that answers from a queue instead of calling the API.

    Each queued item is either response text or an exception to raise.
    The last item is reused once the queue runs dry.
    """

    def __init__(self, *responses):
        super().__init__(api_key="test-gemini-key")
        self.responses = list(responses) or [""]
        self.calls = []

    def queue(self, *responses):
        self.responses = list(responses)

    def generate(self, prompt, images=None):
        self.calls.append({"prompt": prompt, "images": list(images or [])})

        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return {"candidates": [{"content": {"parts": [{"text": item}]}}]}


def gemini_text(rows) -> str:
    """Model-style answer wrapping a JSON payload in prose and a code fence."""
    return f"Here are the transactions:\n```json\n{json.dumps(rows)}\n```"


@pytest.fixture(autouse=True)
def setup_database():
    """Fresh schema for every test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_llm() -> FakeLLMClient:
    return FakeLLMClient(gemini_text([]))


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    return LocalStorage(str(tmp_path / "blobs"))


@pytest.fixture
def client(fake_llm, storage) -> TestClient:
    """TestClient wired to the fake LLM and a temporary local storage."""
    app.dependency_overrides[get_llm_client] = lambda: fake_llm
    app.dependency_overrides[get_storage] = lambda: storage
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def user(db):
    return auth_service.create_user(
        db,
        UserCreate(email="ana@ledgerlens.io", password="s3cret-pass", full_name="Ana"),
    )


@pytest.fixture
def other_user(db):
    return auth_service.create_user(
        db,
        UserCreate(email="budi@ledgerlens.io", password="s3cret-pass", full_name="Budi"),
    )


@pytest.fixture
def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {auth_service.issue_token(user)}"}


@pytest.fixture
def make_statement(db, user):
    """Factory for statements in any status."""

    def _make(name="BCA January", status="draft", bank_statement_url=None, owner=None):
        statement = Statement(
            user_id=(owner or user).id,
            name=name,
            status=status,
            bank_statement_url=bank_statement_url,
        )
        db.add(statement)
        db.commit()
        db.refresh(statement)
        return statement

    return _make


@pytest.fixture
def make_transaction(db, user):
    """Factory for stored transactions."""

    def _make(owner=None, statement=None, source="statement", **fields):
        data = {
            "date": date(2025, 1, 10),
            "amount": Decimal("55000"),
            "transaction_name": "QRIS STARBUCKS",
            "type": "expense",
        }
        data.update(fields)
        tx = build_transaction(
            data,
            user_id=(owner or user).id,
            statement_id=statement.id if statement else None,
            source=source,
        )
        if "created_at" in fields:
            tx.created_at = fields["created_at"]
        db.add(tx)
        db.commit()
        db.refresh(tx)
        return tx

    return _make


