# tests/conftest.py
"""
Pytest configuration and shared fixtures.

Run:
    pytest -v
"""
import os
import tempfile
from datetime import timedelta
from decimal import Decimal

# config.py refuses to import without a secret
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("LOGS_DIR", tempfile.mkdtemp(prefix="genealogy-logs-"))

import pytest

from app import create_app
from config import TestingConfig
from extensions import db
from models import User, Wallet, Plan, Investment, InvestmentStatus
from utils import utcnow


# =============================================================================
# APP FIXTURES
# =============================================================================

@pytest.fixture
def app():
    """Fresh app and in-memory schema for each test."""
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture
def make_user(app):
    """Create a committed user with a wallet. Usernames default to u1, u2, ..."""
    counter = {"n": 0}

    def _make(sponsor=None, username=None, balance="0.00", role="user", password="secret123", is_active=True):
        counter["n"] += 1
        username = username or f"u{counter['n']}"
        user = User(
            username=username,
            email=f"{username}@example.com",
            first_name=username.capitalize(),
            last_name="Tester",
            referral_code=f"REF{counter['n']:05d}",
            sponsor_id=sponsor.id if sponsor else None,
            role=role,
            is_active=is_active,
        )
        user.set_password(password)
        db.session.add(user)
        db.session.flush()
        db.session.add(Wallet(user_id=user.id, balance=Decimal(balance), currency="USD"))
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_chain(make_user):
    """
    make_chain(n) -> [root, ..., leaf], each user sponsored by the previous one.
    """
    def _make(n, balance="0.00"):
        users = []
        sponsor = None
        for _ in range(n):
            sponsor = make_user(sponsor=sponsor, balance=balance)
            users.append(sponsor)
        return users

    return _make


@pytest.fixture
def plan(app):
    plan = Plan(
        name="Starter",
        description="30 day starter plan",
        monthly_rate=Decimal("8.00"),
        min_deposit=Decimal("100.00"),
        max_deposit=Decimal("5000.00"),
        duration_days=30,
        features=["Daily tracking"],
        is_active=True,
    )
    db.session.add(plan)
    db.session.commit()
    return plan


@pytest.fixture
def make_investment(plan):
    """Insert an investment row directly, bypassing wallet and commissions."""
    def _make(user, amount="1000.00", status=InvestmentStatus.ACTIVE.value, start=None, days=None):
        start = start or utcnow()
        investment = Investment(
            user_id=user.id,
            plan_id=plan.id,
            amount=Decimal(amount),
            status=status,
            start_date=start,
            end_date=start + timedelta(days=days if days is not None else plan.duration_days),
            monthly_rate=plan.monthly_rate,
        )
        db.session.add(investment)
        db.session.commit()
        return investment

    return _make


def balance_of(user):
    wallet = Wallet.query.filter_by(user_id=user.id).first()
    return Decimal(str(wallet.balance)).quantize(Decimal("0.01"))


@pytest.fixture
def wallet_balance():
    return balance_of


@pytest.fixture
def login(client):
    def _login(user, password="secret123"):
        response = client.post("/api/login", json={"username": user.username, "password": password})
        assert response.status_code == 200
        return response

    return _login
