"""Tetrix Storage Layer - SQL persistence for the roster, tasks and capacity ledger."""

from .base import StorageAdapter
from .database import DatabaseAdapter, DatabaseConfig
from .models import AllocationModel, Base, TaskModel, TranslatorModel
from .sql_ledger import SqlCapacityLedger, SqlRoster, SqlTaskStore

__all__ = [
    "StorageAdapter",
    "DatabaseAdapter",
    "DatabaseConfig",
    "Base",
    "TranslatorModel",
    "TaskModel",
    "AllocationModel",
    "SqlRoster",
    "SqlTaskStore",
    "SqlCapacityLedger",
]
