# genealogy/payment_processor.py
"""
Payment entry points.

Gateway callbacks and admin approvals land in on_deposit_confirmed; purchases
from the wallet land in on_investment_purchased. Both commit their own unit of
work and roll back completely on failure.
"""
from decimal import Decimal
from typing import Optional, Tuple

from extensions import db
from logger import payments_logger
from models import (
    User, Plan, Investment, InvestmentStatus, Transaction, TransactionType,
    TransactionStatus, PaymentMethod,
)
from genealogy.commission import CommissionCalculator
from genealogy.errors import GenealogyError, NotFoundError, InvalidStateError, PurchaseError
from genealogy.referral_tree import ReferralTreeHelper
from genealogy.wallet import WalletHelper, InsufficientFundsError
from utils import money, utcnow


def _get_plan(plan_id: int) -> Plan:
    plan = db.session.get(Plan, plan_id)
    if plan is None:
        raise NotFoundError(f"Plan {plan_id} not found")
    return plan


def validate_purchase(plan: Plan, amount: Decimal):
    """Raise PurchaseError unless the plan accepts this amount."""
    if not plan.is_active:
        raise PurchaseError(f"Plan '{plan.name}' is not available")
    if amount < money(plan.min_deposit) or amount > money(plan.max_deposit):
        raise PurchaseError(
            f"Amount {amount} is outside the {plan.name} range "
            f"{money(plan.min_deposit)} - {money(plan.max_deposit)}"
        )


def _purchase(user: User, plan: Plan, amount: Decimal) -> Investment:
    """Debit, create and pay commissions. Flushes only."""
    amount = money(amount)
    validate_purchase(plan, amount)

    start = utcnow()
    investment = Investment(
        user_id=user.id,
        plan_id=plan.id,
        amount=amount,
        status=InvestmentStatus.ACTIVE.value,
        start_date=start,
        end_date=Investment.end_date_for(plan, start),
        monthly_rate=plan.monthly_rate,
        profit=Decimal("0.00"),
    )
    db.session.add(investment)
    db.session.flush()

    try:
        WalletHelper.debit(
            user.id,
            amount,
            TransactionType.INVESTMENT.value,
            reference=f"INV-{investment.id}",
            details=f"Purchase of {plan.name} plan",
            investment_id=investment.id,
        )
    except InsufficientFundsError as e:
        raise PurchaseError(str(e)) from e

    CommissionCalculator.distribute_commissions(investment)
    return investment


def on_investment_purchased(user_id: int, plan_id: int, amount) -> Investment:
    """
    Buy a plan from the wallet balance.
    Investment, wallet debit and every commission row commit together or not at all.
    """
    try:
        user = ReferralTreeHelper.get_user(user_id)
        plan = _get_plan(plan_id)
        investment = _purchase(user, plan, money(amount))
        db.session.commit()
    except Exception:
        db.session.rollback()
        payments_logger.exception(f"Investment purchase failed: user {user_id}, plan {plan_id}, amount {amount}")
        raise

    payments_logger.info(
        f"Investment {investment.id} created: user {user_id}, plan {plan_id}, amount {investment.amount}"
    )
    return investment


def _settle_deposit(user_id: int, amount: Decimal, method: str, reference: str) -> Tuple[Transaction, bool]:
    """
    Credit a confirmed deposit. Returns (transaction, newly_settled).
    A pending row with the same reference is completed in place, but only for
    the amount and method it was submitted with.
    """
    existing = Transaction.query.filter_by(reference=reference).first()
    if existing is not None:
        if existing.user_id != user_id or existing.type != TransactionType.DEPOSIT.value:
            raise InvalidStateError(f"Reference {reference} belongs to another transaction")
        if existing.status == TransactionStatus.COMPLETED.value:
            return existing, False
        if existing.status != TransactionStatus.PENDING.value:
            raise InvalidStateError(f"Deposit {reference} is {existing.status}")

        if money(existing.amount) != amount:
            raise InvalidStateError(
                f"Deposit {reference} was submitted for {money(existing.amount)}, confirmed for {amount}"
            )
        if existing.payment_method != method:
            raise InvalidStateError(
                f"Deposit {reference} was submitted via {existing.payment_method}, confirmed via {method}"
            )

        wallet = WalletHelper.get_wallet(user_id)
        wallet.credit(amount)
        existing.status = TransactionStatus.COMPLETED.value
        existing.processed_at = utcnow()
        db.session.flush()
        return existing, True

    transaction = WalletHelper.credit(
        user_id,
        amount,
        TransactionType.DEPOSIT.value,
        reference=reference,
        details=f"Deposit via {method}",
        payment_method=method,
    )
    return transaction, True


def on_deposit_confirmed(user_id: int, amount, *, method: str = PaymentMethod.SYSTEM.value,
                         reference: Optional[str] = None,
                         plan_id: Optional[int] = None) -> Tuple[Transaction, Optional[Investment]]:
    """
    Credit a confirmed deposit and optionally buy a plan with it.

    Repeated confirmations for the same reference credit once. The deposit is
    committed before the purchase; a purchase that fails leaves the funds in
    the wallet and returns no investment.
    """
    amount = money(amount)
    if amount <= 0:
        raise ValueError("Deposit amount must be positive")
    reference = reference or f"DEP-{user_id}-{utcnow().strftime('%Y%m%d%H%M%S%f')}"

    try:
        ReferralTreeHelper.get_user(user_id)
        transaction, settled = _settle_deposit(user_id, amount, method, reference)
        db.session.commit()
    except Exception:
        db.session.rollback()
        payments_logger.exception(f"Deposit confirmation failed: user {user_id}, reference {reference}")
        raise

    if settled:
        payments_logger.info(f"Deposit {reference} credited: user {user_id}, amount {transaction.amount}")
    else:
        payments_logger.info(f"Deposit {reference} already credited, skipping")

    investment = None
    if plan_id is not None and settled:
        try:
            investment = on_investment_purchased(user_id, plan_id, transaction.amount)
        except GenealogyError as e:
            payments_logger.warning(f"Deposit {reference} kept in wallet, purchase of plan {plan_id} failed: {e}")

    return transaction, investment


def reject_deposit(transaction_id: int, actor_id: Optional[int] = None, notes: Optional[str] = None) -> Transaction:
    """Mark a pending manual deposit as failed. Nothing is credited."""
    transaction = db.session.get(Transaction, transaction_id)
    if transaction is None or transaction.type != TransactionType.DEPOSIT.value:
        raise NotFoundError(f"Deposit {transaction_id} not found")
    if transaction.status != TransactionStatus.PENDING.value:
        raise InvalidStateError(f"Deposit {transaction_id} is {transaction.status}")

    transaction.status = TransactionStatus.FAILED.value
    transaction.processed_at = utcnow()
    transaction.processed_by = actor_id
    transaction.admin_notes = notes
    db.session.commit()

    payments_logger.info(f"Deposit {transaction.reference} rejected by {actor_id}")
    return transaction
