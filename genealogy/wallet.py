# genealogy/wallet.py
from decimal import Decimal
from typing import Optional
from flask import current_app

from extensions import db
from models import Wallet, Transaction, TransactionStatus, PaymentMethod
from utils import money, utcnow


class InsufficientFundsError(ValueError):
    pass


class WalletHelper:
    """
    Wallet balance changes. Every change writes a Transaction row in the same
    session; nothing here commits.
    """

    @staticmethod
    def get_wallet(user_id: int, lock: bool = True) -> Wallet:
        """Return the user's wallet, creating it on first use. Locks the row for update."""
        query = Wallet.query.filter_by(user_id=user_id)
        if lock:
            query = query.with_for_update().populate_existing()
        wallet = query.first()
        if wallet is None:
            wallet = Wallet(
                user_id=user_id,
                balance=Decimal("0.00"),
                currency=current_app.config.get("CURRENCY", "USD"),
            )
            db.session.add(wallet)
            db.session.flush()
        return wallet

    @staticmethod
    def credit(user_id: int, amount: Decimal, tx_type: str, *, reference: Optional[str] = None,
               details: Optional[str] = None, payment_method: str = PaymentMethod.SYSTEM.value,
               investment_id: Optional[int] = None) -> Transaction:
        amount = money(amount)
        if amount < 0:
            raise ValueError(f"Cannot credit a negative amount: {amount}")

        wallet = WalletHelper.get_wallet(user_id)
        wallet.credit(amount)

        transaction = Transaction(
            wallet_id=wallet.id,
            user_id=user_id,
            type=tx_type,
            amount=amount,
            currency=wallet.currency,
            status=TransactionStatus.COMPLETED.value,
            payment_method=payment_method,
            reference=reference,
            details=details,
            investment_id=investment_id,
            processed_at=utcnow(),
        )
        db.session.add(transaction)
        db.session.flush()

        current_app.logger.info(
            f"Wallet credit: User {user_id}, {tx_type} {amount}, New Balance: {wallet.balance}"
        )
        return transaction

    @staticmethod
    def debit(user_id: int, amount: Decimal, tx_type: str, *, reference: Optional[str] = None,
              details: Optional[str] = None, payment_method: str = PaymentMethod.WALLET.value,
              investment_id: Optional[int] = None) -> Transaction:
        amount = money(amount)
        if amount <= 0:
            raise ValueError(f"Cannot debit a non-positive amount: {amount}")

        wallet = WalletHelper.get_wallet(user_id)
        balance = money(wallet.balance)
        if balance < amount:
            raise InsufficientFundsError(f"Insufficient wallet balance: {balance} < {amount}")
        wallet.debit(amount)

        transaction = Transaction(
            wallet_id=wallet.id,
            user_id=user_id,
            type=tx_type,
            amount=amount,
            currency=wallet.currency,
            status=TransactionStatus.COMPLETED.value,
            payment_method=payment_method,
            reference=reference,
            details=details,
            investment_id=investment_id,
            processed_at=utcnow(),
        )
        db.session.add(transaction)
        db.session.flush()

        current_app.logger.info(
            f"Wallet debit: User {user_id}, {tx_type} {amount}, New Balance: {wallet.balance}"
        )
        return transaction
