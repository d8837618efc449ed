"""
History Store: durable DLQ records, replay history and auto-replay rules
"""

from dlq_intel.store.base import HistoryStore, RecordFilter, RuleCounterDelta, StoreError
from dlq_intel.store.memory import InMemoryHistoryStore
from dlq_intel.store.postgres import PostgresHistoryStore

__all__ = [
    "HistoryStore",
    "RecordFilter",
    "RuleCounterDelta",
    "StoreError",
    "InMemoryHistoryStore",
    "PostgresHistoryStore",
]
