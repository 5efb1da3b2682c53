"""Core services: allocation, ledger, transaction log, state synchronization."""

from kiosk.services.allocation_service import Allocation, AllocationService, allocate
from kiosk.services.kiosk_service import ContributionValidationError, KioskService
from kiosk.services.ledger import CapacityLedger, LedgerPreconditionError, LedgerSnapshot
from kiosk.services.state import CampaignState, InvalidStateUpdate, merge_by_field
from kiosk.services.state_store import InMemoryStateStore, SqlStateStore, StateStore
from kiosk.services.sync_service import StateSynchronizer
from kiosk.services.transaction_log import ContributionRecord, TransactionLog

__all__ = [
    "Allocation",
    "AllocationService",
    "CampaignState",
    "CapacityLedger",
    "ContributionRecord",
    "ContributionValidationError",
    "InMemoryStateStore",
    "InvalidStateUpdate",
    "KioskService",
    "LedgerPreconditionError",
    "LedgerSnapshot",
    "SqlStateStore",
    "StateStore",
    "StateSynchronizer",
    "TransactionLog",
    "allocate",
    "merge_by_field",
]
