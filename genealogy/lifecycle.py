# genealogy/lifecycle.py
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN
from typing import List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import Investment, InvestmentStatus, TransactionType, AuditLog
from genealogy.errors import NotFoundError, InvalidStateError
from genealogy.wallet import WalletHelper
from utils import CENT, money, utcnow

logger = logging.getLogger(__name__)

DAYS_PER_MONTH = Decimal(30)

# active is the only state with outgoing transitions
ALLOWED_TRANSITIONS = {
    InvestmentStatus.ACTIVE.value: {InvestmentStatus.COMPLETED.value, InvestmentStatus.TERMINATED.value},
    InvestmentStatus.COMPLETED.value: set(),
    InvestmentStatus.TERMINATED.value: set(),
}


class InvestmentLifecycle:
    """active -> completed | terminated. Both targets are terminal."""

    @staticmethod
    def get_investment(investment_id: int) -> Investment:
        investment = db.session.get(Investment, investment_id)
        if investment is None:
            raise NotFoundError(f"Investment {investment_id} not found")
        return investment

    @staticmethod
    def _check_transition(investment: Investment, target: str):
        allowed = ALLOWED_TRANSITIONS.get(investment.status, set())
        if target not in allowed:
            raise InvalidStateError(
                f"Investment {investment.id} cannot move from {investment.status} to {target}"
            )

    @staticmethod
    def calculate_profit(investment: Investment) -> Decimal:
        """Monthly rate pro-rated over the investment term (30-day months)."""
        term_days = Decimal((investment.end_date - investment.start_date).days)
        rate = Decimal(str(investment.monthly_rate)) / Decimal(100)
        profit = Decimal(str(investment.amount)) * rate * term_days / DAYS_PER_MONTH
        return profit.quantize(CENT, rounding=ROUND_HALF_EVEN)

    @staticmethod
    def complete(investment: Investment, now: Optional[datetime] = None) -> Investment:
        """Mature an investment: pay principal plus profit into the owner's wallet."""
        now = now or utcnow()
        InvestmentLifecycle._check_transition(investment, InvestmentStatus.COMPLETED.value)
        if now < investment.end_date:
            raise InvalidStateError(
                f"Investment {investment.id} matures at {investment.end_date.isoformat()}"
            )

        principal = money(investment.amount)
        profit = InvestmentLifecycle.calculate_profit(investment)

        WalletHelper.credit(
            investment.user_id,
            principal + profit,
            TransactionType.PROFIT.value,
            reference=f"PROFIT-{investment.id}",
            details=f"Investment #{investment.id} matured: profit {profit} + principal {principal}",
            investment_id=investment.id,
        )

        investment.status = InvestmentStatus.COMPLETED.value
        investment.profit = profit
        investment.completed_at = now
        db.session.flush()

        logger.info(f"Investment {investment.id} completed: user {investment.user_id} credited {principal + profit}")
        return investment

    @staticmethod
    def terminate(investment: Investment, reason: str, actor_id: Optional[int] = None,
                  refund_principal: bool = False, now: Optional[datetime] = None) -> Investment:
        """Administrative early end. Optionally refunds the principal, never the profit."""
        now = now or utcnow()
        InvestmentLifecycle._check_transition(investment, InvestmentStatus.TERMINATED.value)
        if not reason or not reason.strip():
            raise ValueError("A termination reason is required")

        if refund_principal:
            WalletHelper.credit(
                investment.user_id,
                money(investment.amount),
                TransactionType.REFUND.value,
                reference=f"REFUND-{investment.id}",
                details=f"Principal refund for terminated investment #{investment.id}",
                investment_id=investment.id,
            )

        investment.status = InvestmentStatus.TERMINATED.value
        investment.terminated_at = now
        investment.termination_reason = reason.strip()[:255]

        db.session.add(AuditLog(
            actor_id=actor_id,
            action=f"terminate_investment refund={refund_principal}: {investment.termination_reason}",
            entity_type="investment",
            entity_id=investment.id,
        ))
        db.session.flush()

        logger.info(f"Investment {investment.id} terminated by {actor_id}: {investment.termination_reason}")
        return investment

    @staticmethod
    def process_matured(now: Optional[datetime] = None) -> List[int]:
        """
        Scheduled check: complete every active investment whose end date has passed.
        Each investment commits on its own so one failure does not block the rest.
        """
        now = now or utcnow()
        due = (
            Investment.query
            .filter(
                Investment.status == InvestmentStatus.ACTIVE.value,
                Investment.end_date <= now,
            )
            .order_by(Investment.end_date.asc(), Investment.id.asc())
            .all()
        )
        due_ids = [investment.id for investment in due]

        completed = []
        for investment_id in due_ids:
            try:
                investment = InvestmentLifecycle.get_investment(investment_id)
                InvestmentLifecycle.complete(investment, now)
                db.session.commit()
                completed.append(investment_id)
            except (InvalidStateError, NotFoundError) as e:
                db.session.rollback()
                logger.warning(f"Skipped maturing investment {investment_id}: {e}")
            except SQLAlchemyError:
                db.session.rollback()
                logger.exception(f"Database error while maturing investment {investment_id}")

        logger.info(f"Matured {len(completed)} of {len(due_ids)} due investments")
        return completed
