# tests/test_payment_processor.py
from decimal import Decimal

import pytest

from extensions import db
from models import (
    Investment, InvestmentStatus, Transaction, TransactionType, TransactionStatus, Wallet,
)
from genealogy.commission import CommissionCalculator
from genealogy.errors import NotFoundError, InvalidStateError, PurchaseError
from genealogy.payment_processor import on_deposit_confirmed, on_investment_purchased, reject_deposit
from genealogy.withdrawals import WithdrawalProcessor


def _pending_deposit(user, amount="200.00", reference="DEP-MANUAL-1"):
    wallet = Wallet.query.filter_by(user_id=user.id).one()
    deposit = Transaction(
        wallet_id=wallet.id,
        user_id=user.id,
        type=TransactionType.DEPOSIT.value,
        amount=Decimal(amount),
        status=TransactionStatus.PENDING.value,
        payment_method="crypto",
        reference=reference,
    )
    db.session.add(deposit)
    db.session.commit()
    return deposit


class TestDepositConfirmed:

    def test_credits_wallet(self, make_user, wallet_balance):
        user = make_user()
        transaction, investment = on_deposit_confirmed(user.id, "250.00", method="paypal", reference="PP-100")

        assert investment is None
        assert transaction.status == TransactionStatus.COMPLETED.value
        assert transaction.payment_method == "paypal"
        assert wallet_balance(user) == Decimal("250.00")

    def test_same_reference_credits_once(self, make_user, wallet_balance):
        user = make_user()
        on_deposit_confirmed(user.id, "250.00", method="paypal", reference="PP-101")
        on_deposit_confirmed(user.id, "250.00", method="paypal", reference="PP-101")

        assert wallet_balance(user) == Decimal("250.00")
        assert Transaction.query.filter_by(reference="PP-101").count() == 1

    def test_completes_pending_manual_deposit(self, make_user, wallet_balance):
        user = make_user()
        deposit = _pending_deposit(user)

        transaction, _ = on_deposit_confirmed(user.id, deposit.amount, method="crypto", reference=deposit.reference)

        assert transaction.id == deposit.id
        assert transaction.status == TransactionStatus.COMPLETED.value
        assert wallet_balance(user) == Decimal("200.00")

    def test_pending_deposit_amount_must_match(self, make_user, wallet_balance):
        user = make_user()
        deposit = _pending_deposit(user, amount="5000.00", reference="DEP-X")

        with pytest.raises(InvalidStateError):
            on_deposit_confirmed(user.id, "1.00", method="crypto", reference="DEP-X")

        assert db.session.get(Transaction, deposit.id).status == TransactionStatus.PENDING.value
        assert wallet_balance(user) == Decimal("0.00")

    def test_pending_deposit_method_must_match(self, make_user, wallet_balance):
        user = make_user()
        deposit = _pending_deposit(user)

        with pytest.raises(InvalidStateError):
            on_deposit_confirmed(user.id, deposit.amount, method="paypal", reference=deposit.reference)

        assert db.session.get(Transaction, deposit.id).status == TransactionStatus.PENDING.value
        assert wallet_balance(user) == Decimal("0.00")

    def test_reference_of_another_user_rejected(self, make_user):
        owner = make_user()
        other = make_user()
        on_deposit_confirmed(owner.id, "100.00", method="paypal", reference="PP-102")

        with pytest.raises(InvalidStateError):
            on_deposit_confirmed(other.id, "100.00", method="paypal", reference="PP-102")

    def test_unknown_user(self, app):
        with pytest.raises(NotFoundError):
            on_deposit_confirmed(999, "100.00", method="paypal", reference="PP-103")

    def test_non_positive_amount(self, make_user):
        with pytest.raises(ValueError):
            on_deposit_confirmed(make_user().id, "0", method="paypal", reference="PP-104")

    def test_deposit_with_plan_buys_it(self, make_chain, plan, wallet_balance):
        sponsor, investor = make_chain(2)
        transaction, investment = on_deposit_confirmed(
            investor.id, "300.00", method="coinbase", reference="CB-1", plan_id=plan.id
        )

        assert investment is not None
        assert Decimal(str(investment.amount)) == Decimal("300.00")
        assert wallet_balance(investor) == Decimal("0.00")
        assert wallet_balance(sponsor) == Decimal("30.00")

    def test_failed_purchase_keeps_deposit(self, make_user, plan, wallet_balance):
        user = make_user()
        transaction, investment = on_deposit_confirmed(
            user.id, "50.00", method="paypal", reference="PP-105", plan_id=plan.id
        )

        assert investment is None
        assert transaction.status == TransactionStatus.COMPLETED.value
        assert wallet_balance(user) == Decimal("50.00")

    def test_unexpected_purchase_error_keeps_deposit(self, make_user, plan, wallet_balance, monkeypatch):
        def refuse(investment):
            raise InvalidStateError("commission ledger locked")

        monkeypatch.setattr(CommissionCalculator, "distribute_commissions", staticmethod(refuse))
        user = make_user()
        transaction, investment = on_deposit_confirmed(
            user.id, "300.00", method="paypal", reference="PP-106", plan_id=plan.id
        )

        assert investment is None
        assert transaction.status == TransactionStatus.COMPLETED.value
        assert Investment.query.count() == 0
        assert wallet_balance(user) == Decimal("300.00")

    def test_reject_pending_deposit(self, make_user, wallet_balance):
        user = make_user()
        deposit = _pending_deposit(user)

        reject_deposit(deposit.id, notes="hash not found on chain")

        assert deposit.status == TransactionStatus.FAILED.value
        assert wallet_balance(user) == Decimal("0.00")
        with pytest.raises(InvalidStateError):
            reject_deposit(deposit.id)


class TestInvestmentPurchased:

    def test_debits_and_snapshots_plan(self, make_user, plan, wallet_balance):
        user = make_user(balance="1000.00")
        investment = on_investment_purchased(user.id, plan.id, "400.00")

        assert investment.status == InvestmentStatus.ACTIVE.value
        assert Decimal(str(investment.monthly_rate)) == Decimal("8.00")
        assert (investment.end_date - investment.start_date).days == plan.duration_days
        assert wallet_balance(user) == Decimal("600.00")

        debit = Transaction.query.filter_by(type=TransactionType.INVESTMENT.value).one()
        assert debit.investment_id == investment.id

    def test_insufficient_balance(self, make_user, plan, wallet_balance):
        user = make_user(balance="99.00")
        with pytest.raises(PurchaseError):
            on_investment_purchased(user.id, plan.id, "150.00")
        assert Investment.query.count() == 0
        assert wallet_balance(user) == Decimal("99.00")

    @pytest.mark.parametrize("amount", ["99.99", "5000.01"])
    def test_amount_outside_plan_range(self, make_user, plan, amount):
        user = make_user(balance="10000.00")
        with pytest.raises(PurchaseError):
            on_investment_purchased(user.id, plan.id, amount)

    def test_inactive_plan(self, make_user, plan):
        plan.is_active = False
        db.session.commit()
        user = make_user(balance="1000.00")
        with pytest.raises(PurchaseError):
            on_investment_purchased(user.id, plan.id, "200.00")

    def test_unknown_plan(self, make_user):
        user = make_user(balance="1000.00")
        with pytest.raises(NotFoundError):
            on_investment_purchased(user.id, 404, "200.00")


class TestWithdrawals:

    def test_request_holds_funds(self, make_user, wallet_balance):
        user = make_user(balance="100.00")
        withdrawal = WithdrawalProcessor.request_withdrawal(user.id, "40.00", "TAddr123")

        assert withdrawal.status == TransactionStatus.PENDING.value
        assert withdrawal.destination == "TAddr123"
        assert wallet_balance(user) == Decimal("60.00")

    def test_one_pending_at_a_time(self, make_user):
        user = make_user(balance="100.00")
        WithdrawalProcessor.request_withdrawal(user.id, "20.00", "TAddr123")
        with pytest.raises(InvalidStateError):
            WithdrawalProcessor.request_withdrawal(user.id, "20.00", "TAddr123")

    def test_below_minimum(self, make_user):
        user = make_user(balance="100.00")
        with pytest.raises(ValueError):
            WithdrawalProcessor.request_withdrawal(user.id, "5.00", "TAddr123")

    def test_insufficient_balance(self, make_user, wallet_balance):
        user = make_user(balance="15.00")
        with pytest.raises(ValueError):
            WithdrawalProcessor.request_withdrawal(user.id, "20.00", "TAddr123")
        assert wallet_balance(user) == Decimal("15.00")

    def test_approve(self, make_user, wallet_balance):
        user = make_user(balance="100.00")
        withdrawal = WithdrawalProcessor.request_withdrawal(user.id, "40.00", "TAddr123")
        WithdrawalProcessor.approve(withdrawal.id, notes="sent")

        assert withdrawal.status == TransactionStatus.COMPLETED.value
        assert wallet_balance(user) == Decimal("60.00")

    def test_reject_returns_funds(self, make_user, wallet_balance):
        user = make_user(balance="100.00")
        withdrawal = WithdrawalProcessor.request_withdrawal(user.id, "40.00", "TAddr123")
        WithdrawalProcessor.reject(withdrawal.id, notes="bad address")

        assert withdrawal.status == TransactionStatus.CANCELLED.value
        assert wallet_balance(user) == Decimal("100.00")
        with pytest.raises(InvalidStateError):
            WithdrawalProcessor.approve(withdrawal.id)
