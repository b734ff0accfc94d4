from abc import ABC, abstractmethod
from typing import ContextManager

from sqlalchemy.orm import Session


class StorageAdapter(ABC):
    """
    Storage behind the SQL roster, task store and capacity ledger.

    ``get_session`` opens an independent unit of work. ``scope`` joins the
    unit of work already open on the calling thread, which is how a ledger
    transaction and the task-store write inside it commit together.
    """

    @abstractmethod
    def connect(self) -> None:
        """Create the engine and session factory."""

    @abstractmethod
    def close(self) -> None:
        """Dispose of the engine."""

    @abstractmethod
    def create_schema(self) -> None:
        """Create the translator, task and allocation tables if missing."""

    @abstractmethod
    def health_check(self) -> bool:
        """Return True when a trivial query succeeds."""

    @abstractmethod
    def get_session(self) -> ContextManager[Session]:
        ...

    @abstractmethod
    def scope(self) -> ContextManager[Session]:
        ...
