# genealogy/commission.py
from decimal import Decimal, ROUND_HALF_EVEN
from typing import List, Tuple

from extensions import db
from logger import commissions_logger
from models import Investment, InvestmentStatus, CommissionTransaction, TransactionType
from genealogy.config import CommissionConfigHelper
from genealogy.errors import NotFoundError, InvalidStateError, DuplicateCommissionError
from genealogy.referral_tree import ReferralTreeHelper
from genealogy.wallet import WalletHelper
from utils import CENT


class CommissionCalculator:
    """
    Multi-level commissions on investment principal.
    Walks the sponsor chain upward at most MAX_LEVEL steps and pays each
    ancestor the fixed rate for its level distance.
    """

    @staticmethod
    def calculate_commission_amounts(principal: Decimal, chain_length: int) -> List[Tuple[int, Decimal, Decimal]]:
        """
        (level, rate, amount) for each compensated level of a chain of chain_length ancestors.
        Rounding happens once, on the final amount.
        """
        if chain_length < 0:
            raise ValueError("chain_length cannot be negative")
        principal = Decimal(str(principal))

        payouts = []
        for level in range(1, min(chain_length, CommissionConfigHelper.MAX_LEVEL) + 1):
            rate = CommissionConfigHelper.get_commission_rate(level)
            amount = (principal * rate).quantize(CENT, rounding=ROUND_HALF_EVEN)
            payouts.append((level, rate, amount))
        return payouts

    @staticmethod
    def _ensure_not_distributed(investment_id: int):
        existing = CommissionTransaction.query.filter_by(investment_id=investment_id).count()
        if existing:
            raise DuplicateCommissionError(investment_id)

    @staticmethod
    def distribute_commissions(investment: Investment) -> List[CommissionTransaction]:
        """
        Create and credit the commission rows for a newly active investment.
        Only flushes: the caller's transaction decides commit or rollback.
        A repeat call for the same investment is a no-op and returns [].
        """
        if investment is None or investment.id is None:
            raise NotFoundError("Investment must be persisted before commissions are distributed")

        try:
            CommissionCalculator._ensure_not_distributed(investment.id)
        except DuplicateCommissionError as e:
            commissions_logger.info(f"Skipping commission distribution: {e}")
            return []

        if investment.status != InvestmentStatus.ACTIVE.value:
            raise InvalidStateError(
                f"Investment {investment.id} is {investment.status}; commissions are paid on activation only"
            )

        chain = ReferralTreeHelper.get_sponsor_chain(investment.user_id, CommissionConfigHelper.MAX_LEVEL)
        payouts = CommissionCalculator.calculate_commission_amounts(investment.amount, len(chain))

        created = []
        for beneficiary, (level, rate, amount) in zip(chain, payouts):
            transaction = WalletHelper.credit(
                beneficiary.id,
                amount,
                TransactionType.COMMISSION.value,
                reference=f"COMM-{investment.id}-L{level}",
                details=f"Level {level} commission ({rate * 100:.0f}%) on investment #{investment.id}",
                investment_id=investment.id,
            )
            commission = CommissionTransaction(
                investment_id=investment.id,
                beneficiary_id=beneficiary.id,
                source_user_id=investment.user_id,
                level=level,
                rate=rate,
                amount=amount,
                transaction_id=transaction.id,
            )
            db.session.add(commission)
            created.append(commission)

            commissions_logger.info(
                f"Level {level} commission: user {beneficiary.id} earns {amount} "
                f"from investment {investment.id} by user {investment.user_id}"
            )

        db.session.flush()
        commissions_logger.info(
            f"Distributed {len(created)} commissions for investment {investment.id} "
            f"(chain length {len(chain)})"
        )
        return created
