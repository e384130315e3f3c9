"""
Pooled Staking Reward Ledger

This module provides:
- Deposits and withdrawals against a shared pool
- Operator reward injections gated by a minimum interval
- O(1) proportional reward distribution through a reward-per-share accumulator
- Transferable pool shares with per-holder settlement
- Operator sweep of the balance not owed to depositors
"""

from .accounting import SCALE
from .models import (
    AccountState,
    Capability,
    EventType,
    LedgerEvent,
    PoolState,
    RewardRecord,
    WithdrawalOrder,
)
from .service import PoolLedgerService

__all__ = [
    "SCALE",
    "AccountState",
    "Capability",
    "EventType",
    "LedgerEvent",
    "PoolState",
    "RewardRecord",
    "WithdrawalOrder",
    "PoolLedgerService",
]
