# models.py - Canonical Flask-SQLAlchemy models for the genealogy investment platform
from datetime import datetime, timedelta
from decimal import Decimal
import enum
from sqlalchemy import UniqueConstraint, Index, text
from flask_login import UserMixin
from extensions import db
from werkzeug.security import check_password_hash, generate_password_hash
from utils import utcnow, money

# ===========================================================
# ENUM DEFINITIONS
# ===========================================================

class TransactionType(enum.Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    INVESTMENT = "investment"
    COMMISSION = "commission"
    PROFIT = "profit"
    REFUND = "refund"


class TransactionStatus(enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class InvestmentStatus(enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    TERMINATED = "terminated"


class PaymentMethod(enum.Enum):
    PAYPAL = "paypal"
    PESAPAL = "pesapal"
    CRYPTO = "crypto"
    COINBASE = "coinbase"
    WALLET = "wallet"
    SYSTEM = "system"


# ===========================================================
# BASE MIXIN FOR COMMON FIELDS
# ===========================================================

class BaseMixin:
    """Provides created_at and updated_at timestamps to inheriting models."""
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

# ===========================================================
# USER MODELS
# ===========================================================

class User(db.Model, BaseMixin, UserMixin):
    """Platform member. sponsor_id is the only stored referral edge."""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    first_name = db.Column(db.String(80), nullable=False)
    last_name = db.Column(db.String(80), nullable=False)
    phone = db.Column(db.String(20), nullable=True)
    country = db.Column(db.String(80), nullable=True)
    role = db.Column(db.String(20), nullable=False, default="user", index=True)

    referral_code = db.Column(db.String(20), unique=True, nullable=False)
    sponsor_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)

    password_hash = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    # Relationships
    sponsor = db.relationship('User', remote_side=[id], foreign_keys=[sponsor_id])
    wallet = db.relationship('Wallet', uselist=False, back_populates='user', cascade="all,delete-orphan")
    investments = db.relationship('Investment', back_populates='user', lazy='dynamic')

    __table_args__ = (
        Index('idx_user_sponsor_created', 'sponsor_id', 'created_at'),
    )

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def display_name(self) -> str:
        full_name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full_name or self.username

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def to_dict(self):
        """Serialize user for JSON responses (never includes the password hash)."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "displayName": self.display_name,
            "phone": self.phone,
            "country": self.country,
            "role": self.role,
            "isActive": self.is_active,
            "referralCode": self.referral_code,
            "sponsorId": self.sponsor_id,
            "walletBalance": str(self.wallet.balance) if self.wallet else "0.00",
            "memberSince": self.created_at.isoformat() if self.created_at else None,
        }

# ===========================================================
# WALLET & TRANSACTIONS
# ===========================================================

class Wallet(db.Model, BaseMixin):
    __tablename__ = 'wallets'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True, index=True)
    balance = db.Column(db.Numeric(precision=18, scale=2), nullable=False, default=Decimal("0.00"),
                        server_default=text("0.00"))
    currency = db.Column(db.String(10), default='USD', nullable=False)

    user = db.relationship('User', back_populates='wallet')
    transactions = db.relationship('Transaction', back_populates='wallet', cascade="all,delete-orphan",
                                   lazy='dynamic')

    def credit(self, amount: Decimal):
        self.balance = money(Decimal(str(self.balance or 0)) + amount)

    def debit(self, amount: Decimal):
        self.balance = money(Decimal(str(self.balance or 0)) - amount)


class Transaction(db.Model, BaseMixin):
    """Wallet ledger row: deposits, withdrawals, investments, commissions, profits."""
    __tablename__ = 'transactions'

    id = db.Column(db.Integer, primary_key=True)
    wallet_id = db.Column(db.Integer, db.ForeignKey('wallets.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    type = db.Column(db.String(20), nullable=False, index=True)
    amount = db.Column(db.Numeric(precision=18, scale=2), nullable=False)
    currency = db.Column(db.String(10), default='USD', nullable=False)
    status = db.Column(db.String(20), default=TransactionStatus.PENDING.value, nullable=False, index=True)
    payment_method = db.Column(db.String(20), nullable=True)
    reference = db.Column(db.String(120), unique=True, nullable=True, index=True)
    details = db.Column(db.Text, nullable=True)
    payment_proof = db.Column(db.String(255), nullable=True)
    destination = db.Column(db.String(255), nullable=True)

    investment_id = db.Column(db.Integer, db.ForeignKey('investments.id'), nullable=True, index=True)
    processed_at = db.Column(db.DateTime, nullable=True)
    processed_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)

    wallet = db.relationship('Wallet', back_populates='transactions')

    __table_args__ = (
        Index('idx_transaction_user_type', 'user_id', 'type'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "amount": str(money(self.amount)),
            "currency": self.currency,
            "status": self.status,
            "paymentMethod": self.payment_method,
            "reference": self.reference,
            "details": self.details,
            "investmentId": self.investment_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "processedAt": self.processed_at.isoformat() if self.processed_at else None,
        }

# ===========================================================
# PLANS & INVESTMENTS
# ===========================================================

class Plan(db.Model, BaseMixin):
    __tablename__ = 'plans'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    monthly_rate = db.Column(db.Numeric(5, 2), nullable=False)  # percent per 30 days
    min_deposit = db.Column(db.Numeric(18, 2), nullable=False)
    max_deposit = db.Column(db.Numeric(18, 2), nullable=False)
    duration_days = db.Column(db.Integer, nullable=False, default=30)
    features = db.Column(db.JSON)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    __table_args__ = (
        db.CheckConstraint('min_deposit <= max_deposit', name='chk_plan_deposit_range'),
        db.CheckConstraint('duration_days > 0', name='chk_plan_duration'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "monthlyRate": str(self.monthly_rate),
            "minDeposit": str(money(self.min_deposit)),
            "maxDeposit": str(money(self.max_deposit)),
            "durationDays": self.duration_days,
            "features": self.features or [],
            "isActive": self.is_active,
        }


class Investment(db.Model, BaseMixin):
    __tablename__ = 'investments'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey('plans.id'), nullable=False, index=True)
    amount = db.Column(db.Numeric(18, 2), nullable=False)
    status = db.Column(db.String(20), default=InvestmentStatus.ACTIVE.value, nullable=False)
    start_date = db.Column(db.DateTime, default=utcnow, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)
    monthly_rate = db.Column(db.Numeric(5, 2), nullable=False)  # plan rate at purchase
    profit = db.Column(db.Numeric(18, 2), default=Decimal("0.00"), nullable=False)

    completed_at = db.Column(db.DateTime, nullable=True)
    terminated_at = db.Column(db.DateTime, nullable=True)
    termination_reason = db.Column(db.String(255), nullable=True)

    user = db.relationship('User', back_populates='investments')
    plan = db.relationship('Plan', backref=db.backref('investments', lazy='dynamic'))
    commissions = db.relationship('CommissionTransaction', back_populates='investment', lazy='dynamic')

    __table_args__ = (
        Index('idx_investment_user_status', 'user_id', 'status'),
        Index('idx_investment_status_end', 'status', 'end_date'),
    )

    @staticmethod
    def end_date_for(plan: "Plan", start: datetime) -> datetime:
        return start + timedelta(days=plan.duration_days)

    def to_dict(self, include_plan=True):
        result = {
            "id": self.id,
            "userId": self.user_id,
            "planId": self.plan_id,
            "amount": str(money(self.amount)),
            "status": self.status,
            "startDate": self.start_date.isoformat() if self.start_date else None,
            "endDate": self.end_date.isoformat() if self.end_date else None,
            "monthlyRate": str(self.monthly_rate),
            "profit": str(money(self.profit)),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "terminatedAt": self.terminated_at.isoformat() if self.terminated_at else None,
        }
        if include_plan and self.plan:
            result["plan"] = self.plan.to_dict()
        return result

# ===========================================================
# COMMISSIONS
# ===========================================================

class CommissionTransaction(db.Model, BaseMixin):
    """One payout of a fixed percentage of an investment's principal to one ancestor."""
    __tablename__ = 'commission_transactions'

    id = db.Column(db.Integer, primary_key=True)
    investment_id = db.Column(db.Integer, db.ForeignKey('investments.id'), nullable=False, index=True)
    beneficiary_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    source_user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    level = db.Column(db.Integer, nullable=False)
    rate = db.Column(db.Numeric(5, 4), nullable=False)
    amount = db.Column(db.Numeric(18, 2), nullable=False)
    transaction_id = db.Column(db.Integer, db.ForeignKey('transactions.id'), nullable=True)

    investment = db.relationship('Investment', back_populates='commissions')
    beneficiary = db.relationship('User', foreign_keys=[beneficiary_id], backref=db.backref('commission_earnings', lazy='dynamic'))
    source_user = db.relationship('User', foreign_keys=[source_user_id])

    __table_args__ = (
        UniqueConstraint('investment_id', 'beneficiary_id', name='uq_commission_investment_beneficiary'),
        UniqueConstraint('investment_id', 'level', name='uq_commission_investment_level'),
        db.CheckConstraint('level >= 1 AND level <= 5', name='chk_commission_level_range'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "investmentId": self.investment_id,
            "beneficiaryId": self.beneficiary_id,
            "sourceUserId": self.source_user_id,
            "level": self.level,
            "rate": str(self.rate),
            "amount": str(money(self.amount)),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

# ===========================================================
# AUDITING & WEBHOOKS
# ===========================================================

class AuditLog(db.Model, BaseMixin):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    action = db.Column(db.String(255), nullable=False)
    entity_type = db.Column(db.String(50))
    entity_id = db.Column(db.Integer)
    ip_address = db.Column(db.String(50))


class WebhookEvent(db.Model, BaseMixin):
    __tablename__ = 'webhook_events'

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(50), nullable=False)
    event_type = db.Column(db.String(100))
    payload = db.Column(db.JSON, nullable=False)
    signature = db.Column(db.String(255))
    reference = db.Column(db.String(120), index=True)
    processed = db.Column(db.Boolean, default=False)
    processed_at = db.Column(db.DateTime)
    status = db.Column(db.String(50), default='pending')
    remarks = db.Column(db.String(255))

    __table_args__ = (
        UniqueConstraint('provider', 'reference', name='uq_webhook_provider_reference'),
    )

    def mark_processed(self, success=True, remarks=None):
        self.processed = True
        self.status = 'success' if success else 'failed'
        self.remarks = remarks
        self.processed_at = utcnow()
