"""
Channel Points Ledger

This package provides:
- Atomic point balances (debit, credit, clamped adjust, transfer)
- Append-only point transaction log
- Reward redemption workflow: pending → processing → completed / failed
- Pluggable reward action handlers (chat, sound, screen, music, custom)
- Admin give / remove / set / bulk / transfer point operations
"""

from .actions import ActionHandler, ActionRegistry, build_default_registry
from .models import (
    ActionResult,
    RedemptionStatus,
    RewardTier,
    TransactionType,
)
from .service import LedgerService

__all__ = [
    "ActionHandler",
    "ActionRegistry",
    "ActionResult",
    "LedgerService",
    "RedemptionStatus",
    "RewardTier",
    "TransactionType",
    "build_default_registry",
]
