"""
Pytest configuration and fixtures.

Settings are read from the environment at import time, so the variables below
have to be in place before anything from payflow is imported.
"""
import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("P24_MERCHANT_ID", "11111")
os.environ.setdefault("P24_POS_ID", "11111")
os.environ.setdefault("P24_API_KEY", "test-api-key")
os.environ.setdefault("P24_CRC", "test-crc-key")
os.environ.setdefault("APP_PUBLIC_URL", "https://shop.example.com")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from payflow.api.deps import get_p24_client
from payflow.core.config import settings
from payflow.core.security import ALGO
from payflow.db.session import Base, get_db
from payflow.main import app
from payflow.models.audit_log import AuditLog
from payflow.models.order import Order, OrderStatus
from payflow.models.user import User
from payflow.services.p24_client import P24Client, P24Config, RefundResult, RegisterResult, VerifyResult
from payflow.services.signature import SignedOperation, sign


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so that separate sessions see each other's commits."""
    eng = create_engine(
        f"sqlite:///{tmp_path / 'payflow.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def p24_cfg() -> P24Config:
    return P24Config(merchant_id=11111, pos_id=11111, api_key="test-api-key", crc="test-crc-key")


@pytest.fixture
def gateway(p24_cfg) -> P24Client:
    """Real client (signing, notification checks, URLs) with the three REST calls mocked."""
    client = P24Client(p24_cfg)
    client.register = MagicMock(side_effect=lambda **kw: RegisterResult(
        token="TOKEN-1",
        request={**kw, "sign": "register-sign"},
        raw={"data": {"token": "TOKEN-1"}, "responseCode": 0},
    ))
    client.verify = MagicMock(side_effect=lambda **kw: VerifyResult(
        verified=True,
        request={**kw, "sign": "verify-sign"},
        raw={"data": {"status": "success"}, "responseCode": 0},
    ))
    client.refund = MagicMock(side_effect=lambda **kw: RefundResult(
        accepted=True,
        request={"requestId": kw["request_id"], "refunds": [], "sign": "refund-sign"},
        raw={"data": [{"orderId": kw["order_id"], "status": True, "message": "success"}], "responseCode": 0},
    ))
    return client


@pytest.fixture
def make_user(db):
    def _make(role: str = "customer", email: str | None = None, full_name: str = "Jan Kowalski", is_active: bool = True) -> User:
        user = User(
            id=str(uuid.uuid4()),
            email=email or f"{uuid.uuid4().hex[:8]}@example.com",
            full_name=full_name,
            role=role,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def customer(make_user) -> User:
    return make_user("customer", email="jan@example.com")


@pytest.fixture
def admin(make_user) -> User:
    return make_user("admin", email="admin@example.com", full_name="Shop Admin")


@pytest.fixture
def make_order(db):
    def _make(user: User, total="129.99", status: OrderStatus = OrderStatus.NEW, order_id: str | None = None) -> Order:
        order = Order(
            id=order_id or str(uuid.uuid4()),
            user_id=user.id,
            status=status.value,
            total_amount=Decimal(total),
            currency="PLN",
        )
        db.add(order)
        db.commit()
        return order
    return _make


@pytest.fixture
def notification(p24_cfg):
    """Builds a correctly signed urlStatus body for a payment."""
    def _build(payment, p24_order_id: int = 316123456, **overrides) -> dict:
        body = {
            "merchantId": p24_cfg.merchant_id,
            "posId": p24_cfg.pos_id,
            "sessionId": payment.session_id,
            "amount": payment.amount,
            "originAmount": payment.amount,
            "currency": payment.currency,
            "orderId": p24_order_id,
            "methodId": 25,
            "statement": "p24-A1B-C2D-E3F",
        }
        body.update(overrides)
        body["sign"] = sign(SignedOperation.NOTIFICATION, body, p24_cfg.crc)
        return body
    return _build


@pytest.fixture
def audit_actions(db):
    def _actions() -> list[str]:
        db.expire_all()
        return [a.action for a in db.execute(select(AuditLog).order_by(AuditLog.created_at)).scalars()]
    return _actions


@pytest.fixture
def api(session_factory, gateway):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_p24_client] = lambda: gateway
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()



def mint_token(subject: str, token_type: str = "access", expires_in: timedelta = timedelta(minutes=30)) -> str:
    """Stand-in for the auth service that issues our bearer tokens."""
    payload = {"sub": subject, "type": token_type, "exp": datetime.now(timezone.utc) + expires_in}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGO)


@pytest.fixture
def auth_header():
    def _header(user: User, **kw) -> dict:
        return {"Authorization": f"Bearer {mint_token(user.id, **kw)}"}
    return _header
