"""
Domain Services
"""
from pharmadispatch.domain.services.fee_calculator import FeeCalculator
from pharmadispatch.domain.services.candidate_filter import CandidateFilter
from pharmadispatch.domain.services.scoring import ScoringEngine
from pharmadispatch.domain.services.wallet_service import WalletService
from pharmadispatch.domain.services.commission_service import CommissionService
from pharmadispatch.domain.services.outbox_service import OutboxService
from pharmadispatch.domain.services.dispatch_service import DispatchService
from pharmadispatch.domain.services.settings_service import SettingsService
from pharmadispatch.domain.services.order_service import OrderService
from pharmadispatch.domain.services.courier_service import CourierService

__all__ = [
    "FeeCalculator",
    "CandidateFilter",
    "ScoringEngine",
    "WalletService",
    "CommissionService",
    "OutboxService",
    "DispatchService",
    "SettingsService",
    "OrderService",
    "CourierService",
]
