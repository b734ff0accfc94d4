"""
SQL-backed roster, task store and capacity ledger.

All three share the adapter's per-thread session scope, so a ledger
transaction also covers the task-store write made inside it.
"""

import logging
from contextlib import contextmanager
from dataclasses import replace
from datetime import date
from typing import Iterator, List, Optional

from sqlalchemy.exc import IntegrityError

from tetrix.scheduling.calendar import parse_schedule
from tetrix.scheduling.errors import InvalidInputError, NotFoundError, StaleVersionError
from tetrix.scheduling.ledger import EPSILON, CapacityLedger, TranslatorLocks
from tetrix.scheduling.models import (
    AllocationEntry,
    DistributionMode,
    EntryType,
    Priority,
    Task,
    Translator,
    format_hour,
    round_hours,
)
from tetrix.scheduling.roster import Roster, TaskStore

from .database import DatabaseAdapter
from .models import AllocationModel, TaskModel, TranslatorModel
from .repositories import AllocationRepository, TaskRepository, TranslatorRepository

logger = logging.getLogger(__name__)


def to_translator(row: TranslatorModel) -> Translator:
    start, end = parse_schedule(row.schedule)
    return Translator(
        id=row.id,
        name=row.name,
        daily_capacity=row.daily_capacity,
        schedule_start=start,
        schedule_end=end,
        divisions=list(row.divisions or []),
        language_pairs=list(row.language_pairs or []),
        domains=list(row.domains or []),
        active=row.active,
        seeking_work=row.seeking_work,
    )


def to_task(row: TaskModel) -> Task:
    return Task(
        id=row.id,
        translator_id=row.translator_id,
        total_hours=row.total_hours,
        due_at=row.due_at,
        project_number=row.project_number or "",
        priority=Priority(row.priority),
        mode=DistributionMode(row.mode),
        window_start=row.window_start,
        window_end=row.window_end,
        language_pair=row.language_pair,
        client=row.client,
        domain=row.domain,
        morning_delivery=row.morning_delivery,
        version=row.version,
    )


def task_values(task: Task) -> dict:
    return {
        "project_number": task.project_number,
        "translator_id": task.translator_id,
        "total_hours": task.total_hours,
        "due_at": task.due_at,
        "priority": task.priority.value,
        "mode": task.mode.value,
        "window_start": task.window_start,
        "window_end": task.window_end,
        "language_pair": task.language_pair,
        "client": task.client,
        "domain": task.domain,
        "morning_delivery": task.morning_delivery,
    }


def to_entry(row: AllocationModel) -> AllocationEntry:
    return AllocationEntry(
        id=row.id,
        date=row.date,
        translator_id=row.translator_id,
        hours=row.hours,
        entry_type=EntryType(row.entry_type),
        start=row.start_hour,
        end=row.end_hour,
        task_id=row.task_id,
        reason=row.reason,
        forced=row.forced,
        sequence=row.sequence,
    )


class SqlRoster(Roster):

    def __init__(self, adapter: DatabaseAdapter, repository: Optional[TranslatorRepository] = None):
        self.adapter = adapter
        self.repository = repository or TranslatorRepository()

    def get_translator(self, translator_id: str) -> Optional[Translator]:
        with self.adapter.scope() as session:
            row = self.repository.get(session, translator_id)
            return to_translator(row) if row else None

    def list_translators(self, active_only: bool = True) -> List[Translator]:
        with self.adapter.scope() as session:
            rows = self.repository.list_active(session) if active_only else self.repository.list(session, limit=10000)
            return [to_translator(row) for row in rows]

    def upsert(self, translator: Translator) -> Translator:
        values = {
            "name": translator.name,
            "daily_capacity": translator.daily_capacity,
            "schedule": f"{format_hour(translator.schedule_start)}-{format_hour(translator.schedule_end)}",
            "divisions": list(translator.divisions),
            "language_pairs": list(translator.language_pairs),
            "domains": list(translator.domains),
            "active": translator.active,
            "seeking_work": translator.seeking_work,
        }
        with self.adapter.scope() as session:
            if self.repository.update(session, translator.id, values) is None:
                self.repository.create(session, TranslatorModel(id=translator.id, **values))
        return translator


class SqlTaskStore(TaskStore):

    def __init__(self, adapter: DatabaseAdapter, repository: Optional[TaskRepository] = None):
        self.adapter = adapter
        self.repository = repository or TaskRepository()

    def get(self, task_id: str) -> Optional[Task]:
        with self.adapter.scope() as session:
            row = self.repository.get(session, task_id)
            return to_task(row) if row else None

    def add(self, task: Task) -> Task:
        with self.adapter.scope() as session:
            if self.repository.get(session, task.id) is not None:
                raise InvalidInputError(f"Task {task.id} already exists", {"task_id": task.id})
            try:
                self.repository.create(session, TaskModel(id=task.id, version=task.version, **task_values(task)))
            except IntegrityError as e:
                raise InvalidInputError(f"Task {task.id} already exists", {"task_id": task.id}) from e
        return task

    def update(self, task: Task, expected_version: int) -> Task:
        with self.adapter.scope() as session:
            if self.repository.get(session, task.id) is None:
                raise NotFoundError(f"Task {task.id} not found", {"task_id": task.id})
            if not self.repository.update_if_version(session, task.id, task_values(task), expected_version):
                raise StaleVersionError(
                    f"Task {task.id} was modified concurrently",
                    {"task_id": task.id, "expected": expected_version},
                )
        return replace(task, version=expected_version + 1)

    def delete(self, task_id: str) -> bool:
        with self.adapter.scope() as session:
            return self.repository.delete(session, task_id)


class SqlCapacityLedger(CapacityLedger):
    """
    Ledger persisted in the ``allocations`` table.

    Translator locks serialize writers within the process; the session
    scope makes a transaction's writes commit or roll back together.
    """

    def __init__(
        self,
        adapter: DatabaseAdapter,
        roster: Roster,
        repository: Optional[AllocationRepository] = None,
        locks: Optional[TranslatorLocks] = None,
    ):
        self.adapter = adapter
        self.roster = roster
        self.repository = repository or AllocationRepository()
        self.locks = locks or TranslatorLocks()

    @contextmanager
    def transaction(self, *translator_ids: str) -> Iterator["SqlCapacityLedger"]:
        with self.locks.hold(*translator_ids):
            with self.adapter.scope():
                yield self

    def capacity(self, translator_id: str, day: date) -> float:
        translator = self.roster.get_translator(translator_id)
        if translator is None:
            raise NotFoundError(f"Translator {translator_id} not found", {"translator_id": translator_id})
        return translator.daily_capacity

    def entries_for(
        self,
        translator_id: str,
        start: date,
        end: Optional[date] = None
    ) -> List[AllocationEntry]:
        with self.adapter.scope() as session:
            rows = self.repository.list_for_translator(session, translator_id, start, end or start)
            return [to_entry(row) for row in rows]

    def get_entry(self, entry_id: str) -> Optional[AllocationEntry]:
        with self.adapter.scope() as session:
            row = self.repository.get(session, entry_id)
            return to_entry(row) if row else None

    def entries_for_task(self, task_id: str) -> List[AllocationEntry]:
        with self.adapter.scope() as session:
            return [to_entry(row) for row in self.repository.list_for_task(session, task_id)]

    def add_allocation(self, entry: AllocationEntry, force: bool = False) -> AllocationEntry:
        self._check_hours(entry)
        with self.locks.hold(entry.translator_id), self.adapter.scope() as session:
            capacity = self.capacity(entry.translator_id, entry.date)
            consumed = round_hours(self.repository.booked_hours(session, entry.translator_id, entry.date))
            hours = round_hours(entry.hours)
            overbooked = consumed + hours > capacity + EPSILON
            if overbooked and not force:
                raise self._overbooked(entry.translator_id, entry.date, capacity, consumed, hours)

            stored = replace(
                entry,
                hours=hours,
                forced=entry.forced or overbooked,
                sequence=self.repository.next_sequence(session),
            )
            self.repository.create(session, AllocationModel(
                id=stored.id,
                translator_id=stored.translator_id,
                task_id=stored.task_id,
                date=stored.date,
                hours=stored.hours,
                entry_type=stored.entry_type.value,
                start_hour=stored.start,
                end_hour=stored.end,
                reason=stored.reason,
                forced=stored.forced,
                sequence=stored.sequence,
            ))

        if overbooked:
            logger.warning(
                f"Forced overbooking of {entry.translator_id} on {entry.date}: "
                f"{round_hours(consumed + hours)}h / {capacity}h"
            )
        return stored

    def remove_allocation(self, entry_id: str) -> AllocationEntry:
        entry = self.get_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Allocation {entry_id} not found", {"entry_id": entry_id})
        with self.locks.hold(entry.translator_id), self.adapter.scope() as session:
            self.repository.delete(session, entry_id)
        return entry

    def update_allocation(self, entry_id: str, hours: float, force: bool = False) -> AllocationEntry:
        entry = self.get_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Allocation {entry_id} not found", {"entry_id": entry_id})
        updated = replace(entry, hours=round_hours(hours))
        self._check_hours(updated)
        with self.locks.hold(entry.translator_id), self.adapter.scope() as session:
            capacity = self.capacity(entry.translator_id, entry.date)
            consumed = round_hours(
                self.repository.booked_hours(session, entry.translator_id, entry.date) - entry.hours
            )
            overbooked = consumed + updated.hours > capacity + EPSILON
            if overbooked and not force:
                raise self._overbooked(entry.translator_id, entry.date, capacity, consumed, updated.hours)
            updated.forced = entry.forced or overbooked
            self.repository.update(session, entry_id, {"hours": updated.hours, "forced": updated.forced})
        return updated
