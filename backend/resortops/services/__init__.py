# Services module

from resortops.services.lifecycle_service import LifecycleService, TransitionResult
from resortops.services.side_effect_dispatcher import SideEffectDispatcher
from resortops.services.status_machine import StatusMachine
from resortops.services.stock_ledger_service import StockLedgerService

__all__ = [
    "LifecycleService",
    "TransitionResult",
    "SideEffectDispatcher",
    "StatusMachine",
    "StockLedgerService",
]
