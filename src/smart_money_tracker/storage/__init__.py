"""Storage layer - Database schemas, repositories and the store contract."""

from smart_money_tracker.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from smart_money_tracker.storage.errors import StorageError
from smart_money_tracker.storage.models import (
    AggregatedTransactionModel,
    Base,
    PositionAggregationModel,
    SwapModel,
    WalletModel,
)
from smart_money_tracker.storage.store import SqlStore, Store

__all__ = [
    "AggregatedTransactionModel",
    "Base",
    "DatabaseManager",
    "PositionAggregationModel",
    "SqlStore",
    "StorageError",
    "Store",
    "SwapModel",
    "WalletModel",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
