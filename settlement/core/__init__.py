"""Core settlement logic."""
from .distributor import CommissionDistributor, DistributionReport
from .payments import PaymentInitiator
from .settlement_engine import SettlementEngine, SettlementResult
from .splits import CommissionRates, CommissionShare, compute_split
from .withdrawals import WithdrawalHandler

__all__ = [
    "CommissionDistributor",
    "CommissionRates",
    "CommissionShare",
    "DistributionReport",
    "PaymentInitiator",
    "SettlementEngine",
    "SettlementResult",
    "WithdrawalHandler",
    "compute_split",
]
