# genealogy/config.py
from decimal import Decimal
from typing import Dict, Any, Tuple


class CommissionConfigHelper:
    """
    Fixed commission schedule, as a fraction of the investment principal
    Level 1: 10%, Level 2: 5%, Level 3: 3%, Level 4: 2%, Level 5: 1%
    """

    COMMISSION_RATES = {
        1: Decimal('0.10'),
        2: Decimal('0.05'),
        3: Decimal('0.03'),
        4: Decimal('0.02'),
        5: Decimal('0.01'),
    }

    MAX_LEVEL = 5

    @staticmethod
    def get_commission_rate(level: int) -> Decimal:
        """Rate for a level distance. Levels outside 1..MAX_LEVEL are not compensated."""
        if not isinstance(level, int) or isinstance(level, bool):
            raise TypeError(f"Level must be an int, got {type(level).__name__}")
        return CommissionConfigHelper.COMMISSION_RATES.get(level, Decimal('0'))

    @staticmethod
    def get_distribution_summary() -> Dict[str, Any]:
        """Summary of the schedule for admin/debug views"""
        distribution = {}
        total_rate = Decimal('0')

        for level in range(1, CommissionConfigHelper.MAX_LEVEL + 1):
            rate = CommissionConfigHelper.get_commission_rate(level)
            distribution[level] = {
                'rate': str(rate),
                'rate_display': f"{rate * 100:.0f}%"
            }
            total_rate += rate

        return {
            'distribution': distribution,
            'total_rate': str(total_rate),
            'max_level': CommissionConfigHelper.MAX_LEVEL,
        }

    @staticmethod
    def validate_configuration() -> Tuple[bool, str]:
        """Validate that the schedule is mathematically sound"""
        levels = sorted(CommissionConfigHelper.COMMISSION_RATES)
        if levels != list(range(1, CommissionConfigHelper.MAX_LEVEL + 1)):
            return False, f"Schedule levels {levels} do not cover 1..{CommissionConfigHelper.MAX_LEVEL}"

        total_rate = sum(CommissionConfigHelper.COMMISSION_RATES.values(), Decimal('0'))
        if total_rate <= Decimal('0') or total_rate >= Decimal('1'):
            return False, f"Total commission rate out of range: {total_rate * 100}%"

        return True, f"Commission schedule valid: {total_rate * 100:.0f}% total across {CommissionConfigHelper.MAX_LEVEL} levels"
