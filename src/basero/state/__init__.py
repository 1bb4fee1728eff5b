"""
State tables for ledger accounts, locks, batches and transfer intents
"""

from .accounts import AccountRecord, AccountTable
from .locks import LockRecord, LockTable
from .batches import BatchRecord, BatchTable
from .intents import IntentKind, RouteCall, TransferIntent, build_intent
from .messages import ProcessedMessages

__all__ = [
    "AccountRecord",
    "AccountTable",
    "LockRecord",
    "LockTable",
    "BatchRecord",
    "BatchTable",
    "IntentKind",
    "RouteCall",
    "TransferIntent",
    "build_intent",
    "ProcessedMessages",
]
