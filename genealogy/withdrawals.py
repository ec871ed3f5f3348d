# genealogy/withdrawals.py
from decimal import Decimal
from typing import Optional

from flask import current_app

from extensions import db
from logger import payments_logger
from models import Transaction, TransactionType, TransactionStatus, PaymentMethod
from genealogy.errors import NotFoundError, InvalidStateError
from genealogy.referral_tree import ReferralTreeHelper
from genealogy.wallet import WalletHelper, InsufficientFundsError
from utils import money, utcnow


class WithdrawalProcessor:
    """
    Withdrawals hold funds at request time: the wallet is debited immediately
    and the pending row waits for an admin. Rejection puts the funds back.
    """

    @staticmethod
    def validate_request(user_id: int, amount: Decimal, destination: str):
        if not destination or not destination.strip():
            raise ValueError("A destination address or account is required")

        minimum = money(current_app.config.get("MIN_WITHDRAWAL", "10.00"))
        if amount < minimum:
            raise ValueError(f"Minimum withdrawal is {minimum}")

        user = ReferralTreeHelper.get_user(user_id)
        if not user.is_active:
            raise InvalidStateError("Account is inactive")

        pending = Transaction.query.filter_by(
            user_id=user_id,
            type=TransactionType.WITHDRAWAL.value,
            status=TransactionStatus.PENDING.value,
        ).first()
        if pending:
            raise InvalidStateError("You have a pending withdrawal. Please wait for it to complete.")

    @staticmethod
    def request_withdrawal(user_id: int, amount, destination: str,
                           method: str = PaymentMethod.CRYPTO.value) -> Transaction:
        amount = money(amount)
        try:
            WithdrawalProcessor.validate_request(user_id, amount, destination)

            wallet = WalletHelper.get_wallet(user_id)
            balance = money(wallet.balance)
            if balance < amount:
                raise InsufficientFundsError(f"Insufficient wallet balance: {balance} < {amount}")
            wallet.debit(amount)

            transaction = Transaction(
                wallet_id=wallet.id,
                user_id=user_id,
                type=TransactionType.WITHDRAWAL.value,
                amount=amount,
                currency=wallet.currency,
                status=TransactionStatus.PENDING.value,
                payment_method=method,
                reference=f"WD-{user_id}-{utcnow().strftime('%Y%m%d%H%M%S%f')}",
                destination=destination.strip(),
                details=f"Withdrawal to {destination.strip()}",
            )
            db.session.add(transaction)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        payments_logger.info(f"Withdrawal {transaction.reference} requested: user {user_id}, amount {amount}")
        return transaction

    @staticmethod
    def _get_pending(transaction_id: int) -> Transaction:
        transaction = db.session.get(Transaction, transaction_id)
        if transaction is None or transaction.type != TransactionType.WITHDRAWAL.value:
            raise NotFoundError(f"Withdrawal {transaction_id} not found")
        if transaction.status != TransactionStatus.PENDING.value:
            raise InvalidStateError(f"Withdrawal {transaction_id} is {transaction.status}")
        return transaction

    @staticmethod
    def approve(transaction_id: int, actor_id: Optional[int] = None, notes: Optional[str] = None) -> Transaction:
        transaction = WithdrawalProcessor._get_pending(transaction_id)
        transaction.status = TransactionStatus.COMPLETED.value
        transaction.processed_at = utcnow()
        transaction.processed_by = actor_id
        transaction.admin_notes = notes
        db.session.commit()

        payments_logger.info(f"Withdrawal {transaction.reference} approved by {actor_id}")
        return transaction

    @staticmethod
    def reject(transaction_id: int, actor_id: Optional[int] = None, notes: Optional[str] = None) -> Transaction:
        """Cancel a pending withdrawal and return the held funds to the wallet."""
        try:
            transaction = WithdrawalProcessor._get_pending(transaction_id)
            wallet = WalletHelper.get_wallet(transaction.user_id)
            wallet.credit(money(transaction.amount))

            transaction.status = TransactionStatus.CANCELLED.value
            transaction.processed_at = utcnow()
            transaction.processed_by = actor_id
            transaction.admin_notes = notes
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        payments_logger.info(f"Withdrawal {transaction.reference} rejected by {actor_id}, funds returned")
        return transaction
