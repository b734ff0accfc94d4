"""
Capacity Ledger

Authoritative record of the hours each translator has committed per day.

Every write for a translator runs under that translator's lock, and
``transaction()`` holds the lock across a whole unit of work
(distribute, write, re-scan) so readers never observe a half-applied
distribution. Inside a transaction, a failure rolls every write back.

Usage:
    ledger = InMemoryCapacityLedger(roster)

    with ledger.transaction("tr-1"):
        entry = ledger.add_allocation(AllocationEntry(...))
        conflicts = detector.detect("tr-1", day, day, ledger)
"""

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import replace
from datetime import date
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from .errors import CapacityExceededError, InvalidInputError, NotFoundError
from .models import AllocationEntry, round_hours
from .roster import Roster

logger = logging.getLogger(__name__)

EPSILON = 1e-6


class TranslatorLocks:
    """Registry of one re-entrant lock per translator."""

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def get(self, translator_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(translator_id)
            if lock is None:
                lock = self._locks[translator_id] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, *translator_ids: str) -> Iterator[None]:
        """Acquire several translators' locks in a stable order."""
        locks = [self.get(tid) for tid in sorted(set(t for t in translator_ids if t))]
        for lock in locks:
            lock.acquire()
        try:
            yield
        finally:
            for lock in reversed(locks):
                lock.release()


class LedgerReader(ABC):
    """Read contract shared by real ledgers and hypothetical overlays."""

    @abstractmethod
    def capacity(self, translator_id: str, day: date) -> float:
        pass

    @abstractmethod
    def entries_for(
        self,
        translator_id: str,
        start: date,
        end: Optional[date] = None
    ) -> List[AllocationEntry]:
        """Entries of a translator in the inclusive date range, ordered by date then sequence."""

    @abstractmethod
    def get_entry(self, entry_id: str) -> Optional[AllocationEntry]:
        pass

    @abstractmethod
    def entries_for_task(self, task_id: str) -> List[AllocationEntry]:
        pass

    def consumed_hours(self, translator_id: str, day: date) -> float:
        return round_hours(sum(e.hours for e in self.entries_for(translator_id, day)))

    def available_hours(self, translator_id: str, day: date) -> float:
        """Capacity minus committed hours, floored at zero."""
        return max(0.0, round_hours(self.capacity(translator_id, day) - self.consumed_hours(translator_id, day)))


class CapacityLedger(LedgerReader):
    """Write contract of the ledger."""

    @abstractmethod
    def add_allocation(self, entry: AllocationEntry, force: bool = False) -> AllocationEntry:
        """
        Record an entry.

        Raises:
            CapacityExceededError: the day would be overbooked and force is False
            NotFoundError: unknown translator
        """

    @abstractmethod
    def remove_allocation(self, entry_id: str) -> AllocationEntry:
        pass

    @abstractmethod
    def update_allocation(self, entry_id: str, hours: float, force: bool = False) -> AllocationEntry:
        pass

    @abstractmethod
    def transaction(self, *translator_ids: str):
        """Context manager holding the translators' locks with rollback on error."""

    @staticmethod
    def _check_hours(entry: AllocationEntry) -> None:
        if entry.hours < 0:
            raise InvalidInputError(
                "Allocated hours cannot be negative",
                {"entry_id": entry.id, "hours": entry.hours},
            )

    @staticmethod
    def _overbooked(
        translator_id: str,
        day: date,
        capacity: float,
        consumed: float,
        requested: float,
    ) -> CapacityExceededError:
        return CapacityExceededError(
            f"Translator {translator_id} has {round_hours(max(0.0, capacity - consumed))}h "
            f"available on {day.isoformat()}, {requested}h requested",
            {
                "translator_id": translator_id,
                "date": day.isoformat(),
                "capacity": capacity,
                "consumed": consumed,
                "requested": requested,
            },
        )


class InMemoryCapacityLedger(CapacityLedger):
    """Process-local ledger with a per-thread undo journal."""

    def __init__(self, roster: Roster, locks: Optional[TranslatorLocks] = None):
        self.roster = roster
        self.locks = locks or TranslatorLocks()
        self._entries: Dict[str, AllocationEntry] = {}
        self._by_day: Dict[Tuple[str, date], List[str]] = defaultdict(list)
        self._sequence = itertools.count(1)
        self._local = threading.local()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self, *translator_ids: str) -> Iterator["InMemoryCapacityLedger"]:
        with self.locks.hold(*translator_ids):
            outermost = getattr(self._local, "journal", None) is None
            if outermost:
                self._local.journal = []
            try:
                yield self
            except BaseException:
                if outermost:
                    self._rollback()
                raise
            finally:
                if outermost:
                    self._local.journal = None

    def _record(self, undo: Callable[[], None]) -> None:
        journal = getattr(self._local, "journal", None)
        if journal is not None:
            journal.append(undo)

    def _rollback(self) -> None:
        journal = self._local.journal
        logger.info(f"Rolling back {len(journal)} ledger writes")
        for undo in reversed(journal):
            undo()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

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
        end = end or start
        with self.locks.hold(translator_id):
            found = [
                self._entries[entry_id]
                for (tid, day), ids in self._by_day.items()
                if tid == translator_id and start <= day <= end
                for entry_id in ids
            ]
        return sorted(found, key=lambda e: (e.date, e.sequence))

    def get_entry(self, entry_id: str) -> Optional[AllocationEntry]:
        return self._entries.get(entry_id)

    def entries_for_task(self, task_id: str) -> List[AllocationEntry]:
        found = [e for e in list(self._entries.values()) if e.task_id == task_id]
        return sorted(found, key=lambda e: (e.date, e.sequence))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_allocation(self, entry: AllocationEntry, force: bool = False) -> AllocationEntry:
        self._check_hours(entry)
        with self.locks.hold(entry.translator_id):
            capacity = self.capacity(entry.translator_id, entry.date)
            consumed = self.consumed_hours(entry.translator_id, entry.date)
            hours = round_hours(entry.hours)
            overbooked = consumed + hours > capacity + EPSILON
            if overbooked and not force:
                raise self._overbooked(entry.translator_id, entry.date, capacity, consumed, hours)

            stored = replace(
                entry,
                hours=hours,
                forced=entry.forced or overbooked,
                sequence=next(self._sequence),
            )
            self._insert(stored)
            self._record(lambda: self._drop(stored.id))

        if overbooked:
            logger.warning(
                f"Forced overbooking of {entry.translator_id} on {entry.date}: "
                f"{round_hours(consumed + hours)}h / {capacity}h"
            )
        return stored

    def remove_allocation(self, entry_id: str) -> AllocationEntry:
        entry = self._require(entry_id)
        with self.locks.hold(entry.translator_id):
            self._drop(entry_id)
            self._record(lambda: self._insert(entry))
        return entry

    def update_allocation(self, entry_id: str, hours: float, force: bool = False) -> AllocationEntry:
        entry = self._require(entry_id)
        updated = replace(entry, hours=round_hours(hours))
        self._check_hours(updated)
        with self.locks.hold(entry.translator_id):
            capacity = self.capacity(entry.translator_id, entry.date)
            consumed = round_hours(self.consumed_hours(entry.translator_id, entry.date) - entry.hours)
            overbooked = consumed + updated.hours > capacity + EPSILON
            if overbooked and not force:
                raise self._overbooked(entry.translator_id, entry.date, capacity, consumed, updated.hours)
            updated.forced = entry.forced or overbooked
            self._entries[entry_id] = updated
            self._record(lambda: self._entries.__setitem__(entry_id, entry))
        return updated

    def _require(self, entry_id: str) -> AllocationEntry:
        entry = self._entries.get(entry_id)
        if entry is None:
            raise NotFoundError(f"Allocation {entry_id} not found", {"entry_id": entry_id})
        return entry

    def _insert(self, entry: AllocationEntry) -> None:
        self._entries[entry.id] = entry
        self._by_day[(entry.translator_id, entry.date)].append(entry.id)

    def _drop(self, entry_id: str) -> None:
        entry = self._entries.pop(entry_id)
        key = (entry.translator_id, entry.date)
        self._by_day[key].remove(entry_id)
        if not self._by_day[key]:
            del self._by_day[key]


class OverlayLedger(LedgerReader):
    """
    Read-only view of a ledger with some entries hidden and others added.

    Used to evaluate hypothetical distributions without touching the
    underlying ledger.
    """

    def __init__(
        self,
        base: LedgerReader,
        hidden_ids: Iterable[str] = (),
        extra_entries: Iterable[AllocationEntry] = (),
    ):
        self.base = base
        self.hidden_ids = set(hidden_ids)
        self.extra_entries = list(extra_entries)

    def capacity(self, translator_id: str, day: date) -> float:
        return self.base.capacity(translator_id, day)

    def entries_for(
        self,
        translator_id: str,
        start: date,
        end: Optional[date] = None
    ) -> List[AllocationEntry]:
        end = end or start
        entries = [
            e for e in self.base.entries_for(translator_id, start, end)
            if e.id not in self.hidden_ids
        ]
        entries.extend(
            e for e in self.extra_entries
            if e.translator_id == translator_id and start <= e.date <= end
        )
        return sorted(entries, key=lambda e: (e.date, e.sequence))

    def get_entry(self, entry_id: str) -> Optional[AllocationEntry]:
        for entry in self.extra_entries:
            if entry.id == entry_id:
                return entry
        if entry_id in self.hidden_ids:
            return None
        return self.base.get_entry(entry_id)

    def entries_for_task(self, task_id: str) -> List[AllocationEntry]:
        entries = [e for e in self.base.entries_for_task(task_id) if e.id not in self.hidden_ids]
        entries.extend(e for e in self.extra_entries if e.task_id == task_id)
        return sorted(entries, key=lambda e: (e.date, e.sequence))
