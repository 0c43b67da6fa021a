"""Database package for the settlement ledger."""
from .connection import close_db, create_engine, create_session_factory, init_db
from .ledger_store import LedgerStore
from .models import (
    Base,
    Commission,
    Product,
    Seller,
    Transaction,
    User,
    Withdrawal,
)

__all__ = [
    "Base",
    "Commission",
    "LedgerStore",
    "Product",
    "Seller",
    "Transaction",
    "User",
    "Withdrawal",
    "close_db",
    "create_engine",
    "create_session_factory",
    "init_db",
]
