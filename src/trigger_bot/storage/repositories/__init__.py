"""
Repository classes for the PostgreSQL trigger store.
"""
from trigger_bot.storage.repositories.base import BaseRepository
from trigger_bot.storage.repositories.execution_repo import (
    ExecutionRepository,
    claim_lock_key,
)
from trigger_bot.storage.repositories.trigger_repo import TriggerRepository

__all__ = [
    "BaseRepository",
    "ExecutionRepository",
    "TriggerRepository",
    "claim_lock_key",
]
