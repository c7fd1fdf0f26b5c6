"""
Database Module
"""
from .connection import init_database, close_database, get_engine, get_session_factory
from .models import Base
from .store import SettlementStore

__all__ = [
    "init_database",
    "close_database",
    "get_engine",
    "get_session_factory",
    "Base",
    "SettlementStore",
]
