"""
Shared fixtures. The app is pointed at a throwaway SQLite database before
any application module is imported.
"""
import os
import tempfile

_TEST_DIR = tempfile.mkdtemp(prefix="rfi-tracker-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DIR, 'test.db')}"
os.environ["DEBUG"] = "true"
os.environ["SECRET_KEY"] = "test-secret-key-0123456789abcdef0123456789abcdef"
os.environ["NOTIFICATION_FANOUT_MODE"] = "inline"
os.environ["SEED_DEMO"] = "false"

import pytest
from fastapi.testclient import TestClient

from app.db.session import Base, SessionLocal, engine
from app.db import models  # noqa - register models on the metadata
from app.db.models import User, Evaluator, Vendor, ApprovalStatus
from app.core.rbac import Principal, Role
from app.api.auth import issue_token
from app.services.scoring import SUB_CRITERIA


# ============= DATABASE =============

@pytest.fixture(autouse=True)
def fresh_schema():
    """Every test starts from empty tables."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    from app.main import app
    return TestClient(app)


# ============= FACTORIES =============

@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make_user(role=Role.DECISION_MAKER, email=None, name=None, with_evaluator=True, **permissions):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            email=email or f"user{n}@example.com",
            hashed_password="$2b$12$not-a-real-hash",
            name=name or f"User {n}",
            role=role.value,
            approval_status=ApprovalStatus.APPROVED.value,
            **permissions,
        )
        db.add(user)
        db.flush()
        if with_evaluator:
            db.add(Evaluator(user_id=user.id, name=user.name, email=user.email, role=role.value))
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_vendor(db):
    counter = {"n": 0}

    def _make_vendor(name=None, **fields):
        counter["n"] += 1
        vendor = Vendor(name=name or f"Vendor {counter['n']}", scopes=["AI"], contacts=[], **fields)
        db.add(vendor)
        db.commit()
        db.refresh(vendor)
        return vendor

    return _make_vendor


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {issue_token(user)}"}


def principal_for(user) -> Principal:
    return Principal(
        user_id=user.id,
        email=user.email,
        role=Role(user.role),
        evaluator_id=user.evaluator.id if user.evaluator else None,
        name=user.name,
    )


def evaluation_payload(vendor_id: int, score: float = 7, **overrides) -> dict:
    payload = {"vendor_id": vendor_id, "domain": "AI"}
    for name in SUB_CRITERIA:
        payload[f"{name}_score"] = score
        payload[f"{name}_remark"] = f"Remark on {name}"
    payload.update(overrides)
    return payload


@pytest.fixture(name="auth_headers")
def auth_headers_fixture():
    return auth_headers


@pytest.fixture(name="principal_for")
def principal_for_fixture():
    return principal_for


@pytest.fixture(name="evaluation_payload")
def evaluation_payload_fixture():
    return evaluation_payload
