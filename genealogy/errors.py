class GenealogyError(Exception):
    """Base class for referral, commission and lifecycle errors"""
    pass

class NotFoundError(GenealogyError):
    """Unknown user, plan or investment id"""
    pass

class InvalidStateError(GenealogyError):
    """Disallowed investment lifecycle transition"""
    pass

class DuplicateCommissionError(GenealogyError):
    """Commissions already exist for an investment"""

    def __init__(self, investment_id: int):
        super().__init__(f"Commissions already distributed for investment {investment_id}")
        self.investment_id = investment_id

class PurchaseError(GenealogyError):
    """Investment purchase rejected: inactive plan, amount out of range, insufficient balance"""
    pass
