"""Pytest fixtures for testing"""

import itertools
import pytest
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Generator, List, Optional
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker, Session

from credit_ledger.api.dependencies import get_gateway_client
from credit_ledger.api.main import create_app
from credit_ledger.domain.exceptions import GatewayError
from credit_ledger.infrastructure.clients.gateway import ChargeResult, RefundResult
from credit_ledger.infrastructure.database.models import (
    Base,
    CreditLine,
    CreditMemo,
    CustomerProfile,
    Offer,
    RewardRedemption,
)
from credit_ledger.infrastructure.database.session import build_engine, get_db


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = build_engine(TEST_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@dataclass
class FakeGateway:
    """In-memory stand-in for the card gateway; records every call"""

    fail_charges: bool = False
    fail_refunds: bool = False
    charges: List[dict] = field(default_factory=list)
    refunds: List[dict] = field(default_factory=list)
    _ids: itertools.count = field(default_factory=lambda: itertools.count(1))

    def charge_card(self, amount_cents, card, order_reference=None) -> ChargeResult:
        if self.fail_charges:
            raise GatewayError("Card declined")
        self.charges.append({"amount_cents": amount_cents, "card": card, "order_reference": order_reference})
        return ChargeResult(success=True, transaction_id=f"txn_{next(self._ids)}")

    def refund(self, transaction_id, amount_cents, reason=None) -> RefundResult:
        if self.fail_refunds:
            raise GatewayError("Gateway timeout after 10.0s")
        self.refunds.append({"transaction_id": transaction_id, "amount_cents": amount_cents, "reason": reason})
        return RefundResult(success=True, refund_transaction_id=f"rf_{next(self._ids)}")


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def client(db: Session, gateway: FakeGateway) -> TestClient:
    """Create FastAPI test client with test database and fake gateway"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway_client] = lambda: gateway
    return TestClient(app)


@pytest.fixture
def make_profile(db: Session):
    def _make(customer_id: str = "pharm_1", reward_points: int = 0) -> CustomerProfile:
        profile = CustomerProfile(id=customer_id, reward_points=reward_points, lifetime_reward_points=reward_points)
        db.add(profile)
        db.commit()
        return profile

    return _make


@pytest.fixture
def make_credit_line(db: Session):
    def _make(
        customer_id: str = "pharm_1",
        limit_cents: int = 500000,
        used_cents: int = 0,
        net_terms: int = 30,
        interest_rate: Decimal = Decimal("3.00"),
    ) -> CreditLine:
        if db.get(CustomerProfile, customer_id) is None:
            db.add(CustomerProfile(id=customer_id, reward_points=0, lifetime_reward_points=0))
        line = CreditLine(
            customer_id=customer_id,
            credit_limit_cents=limit_cents,
            used_credit_cents=used_cents,
            available_credit_cents=limit_cents - used_cents,
            net_terms=net_terms,
            interest_rate=interest_rate,
            status="active",
            payment_score=100,
        )
        db.add(line)
        db.commit()
        return line

    return _make


@pytest.fixture
def make_memo(db: Session):
    counter = itertools.count(1)

    def _make(customer_id: str = "pharm_1", amount_cents: int = 2000, status: str = "issued") -> CreditMemo:
        memo = CreditMemo(
            memo_number=f"CM-TEST{next(counter):04d}",
            customer_id=customer_id,
            amount_cents=amount_cents,
            applied_cents=0,
            balance_cents=amount_cents,
            reason="Damaged goods",
            status=status,
        )
        db.add(memo)
        db.commit()
        return memo

    return _make


@pytest.fixture
def make_offer(db: Session):
    def _make(
        offer_type: str = "percentage",
        discount_value: Decimal = Decimal("10"),
        max_discount_cents: Optional[int] = None,
        min_order_cents: Optional[int] = None,
        usage_limit: Optional[int] = None,
        used_count: int = 0,
        is_active: bool = True,
        code: Optional[str] = None,
    ) -> Offer:
        offer = Offer(
            code=code,
            title="Spring Savings",
            offer_type=offer_type,
            discount_value=discount_value,
            max_discount_cents=max_discount_cents,
            min_order_cents=min_order_cents,
            usage_limit=usage_limit,
            used_count=used_count,
            is_active=is_active,
        )
        db.add(offer)
        db.commit()
        return offer

    return _make


@pytest.fixture
def make_redemption(db: Session):
    def _make(
        customer_id: str = "pharm_1",
        reward_type: str = "free_shipping",
        reward_value: Decimal = Decimal("0"),
        status: str = "pending",
    ) -> RewardRedemption:
        redemption = RewardRedemption(
            customer_id=customer_id,
            reward_name="Free Shipping Voucher",
            reward_type=reward_type,
            reward_value=reward_value,
            status=status,
        )
        db.add(redemption)
        db.commit()
        return redemption

    return _make
