"""
Read-side collaborators of the engine: the translator roster and the task store.

The in-memory implementations back the default deployment and the tests;
the SQL ones live in ``tetrix.storage.sql_ledger``.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from .errors import InvalidInputError, NotFoundError, StaleVersionError
from .models import Task, Translator

logger = logging.getLogger(__name__)


class Roster(ABC):
    """Source of translator profiles."""

    @abstractmethod
    def get_translator(self, translator_id: str) -> Optional[Translator]:
        pass

    @abstractmethod
    def list_translators(self, active_only: bool = True) -> List[Translator]:
        pass


class TaskStore(ABC):
    """Persistence contract for task headers with optimistic locking."""

    @abstractmethod
    def get(self, task_id: str) -> Optional[Task]:
        pass

    @abstractmethod
    def add(self, task: Task) -> Task:
        """Store a new task. Raises InvalidInputError if the id is taken."""

    @abstractmethod
    def update(self, task: Task, expected_version: int) -> Task:
        """
        Replace a stored task if its version still matches.

        Returns:
            The stored task with its version incremented

        Raises:
            NotFoundError: unknown task
            StaleVersionError: the stored version differs from expected_version
        """

    @abstractmethod
    def delete(self, task_id: str) -> bool:
        pass

    def require(self, task_id: str) -> Task:
        task = self.get(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found", {"task_id": task_id})
        return task


class InMemoryRoster(Roster):

    def __init__(self, translators: Iterable[Translator] = ()):
        self._translators: Dict[str, Translator] = {t.id: t for t in translators}

    def upsert(self, translator: Translator) -> Translator:
        self._translators[translator.id] = translator
        return translator

    def get_translator(self, translator_id: str) -> Optional[Translator]:
        return self._translators.get(translator_id)

    def list_translators(self, active_only: bool = True) -> List[Translator]:
        translators = sorted(self._translators.values(), key=lambda t: t.id)
        if active_only:
            return [t for t in translators if t.active]
        return translators


class InMemoryTaskStore(TaskStore):

    def __init__(self):
        self._tasks: Dict[str, Task] = {}
        self._lock = threading.Lock()

    def get(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def add(self, task: Task) -> Task:
        with self._lock:
            if task.id in self._tasks:
                raise InvalidInputError(f"Task {task.id} already exists", {"task_id": task.id})
            self._tasks[task.id] = task
        return task

    def update(self, task: Task, expected_version: int) -> Task:
        with self._lock:
            current = self._tasks.get(task.id)
            if current is None:
                raise NotFoundError(f"Task {task.id} not found", {"task_id": task.id})
            if current.version != expected_version:
                raise StaleVersionError(
                    f"Task {task.id} was modified concurrently",
                    {"task_id": task.id, "expected": expected_version, "actual": current.version},
                )
            stored = replace(task, version=expected_version + 1)
            self._tasks[task.id] = stored
        logger.debug(f"Task {task.id} updated to version {stored.version}")
        return stored

    def delete(self, task_id: str) -> bool:
        with self._lock:
            return self._tasks.pop(task_id, None) is not None
