"""Storage layer - Database schemas and repositories."""

from accumulation_tracker.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from accumulation_tracker.storage.models import (
    AccumulationSignalModel,
    AlertModel,
    Base,
    TokenModel,
    TransactionModel,
    UserModel,
    WalletPositionModel,
)
from accumulation_tracker.storage.repos import (
    AlertDTO,
    AlertRepository,
    DexEventRepository,
    SignalDTO,
    SignalRepository,
    TokenDTO,
    TokenRepository,
    TransactionDTO,
    TransactionRepository,
    UserDTO,
    UserRepository,
    WalletPositionDTO,
    WalletPositionRepository,
)

__all__ = [
    "AccumulationSignalModel",
    "AlertDTO",
    "AlertModel",
    "AlertRepository",
    "Base",
    "DatabaseManager",
    "DexEventRepository",
    "SignalDTO",
    "SignalRepository",
    "TokenDTO",
    "TokenModel",
    "TokenRepository",
    "TransactionDTO",
    "TransactionModel",
    "TransactionRepository",
    "UserDTO",
    "UserModel",
    "UserRepository",
    "WalletPositionDTO",
    "WalletPositionModel",
    "WalletPositionRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
