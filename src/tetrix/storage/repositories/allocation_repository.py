from datetime import date
from typing import List
from sqlalchemy.orm import Session
from sqlalchemy import select, func

from tetrix.storage.models import AllocationModel
from .base import BaseRepository


class AllocationRepository(BaseRepository[AllocationModel]):
    """Repository for capacity-ledger rows."""

    model = AllocationModel
    fields = ('hours', 'start_hour', 'end_hour', 'reason', 'forced')
    order_by = 'sequence'

    def list_for_translator(
        self,
        session: Session,
        translator_id: str,
        start: date,
        end: date
    ) -> List[AllocationModel]:
        stmt = select(AllocationModel).where(
            AllocationModel.translator_id == translator_id,
            AllocationModel.date >= start,
            AllocationModel.date <= end,
        ).order_by(AllocationModel.date, AllocationModel.sequence)
        return list(session.scalars(stmt).all())

    def list_for_task(self, session: Session, task_id: str) -> List[AllocationModel]:
        stmt = select(AllocationModel).where(
            AllocationModel.task_id == task_id
        ).order_by(AllocationModel.date, AllocationModel.sequence)
        return list(session.scalars(stmt).all())

    def booked_hours(self, session: Session, translator_id: str, day: date) -> float:
        stmt = select(func.coalesce(func.sum(AllocationModel.hours), 0.0)).where(
            AllocationModel.translator_id == translator_id,
            AllocationModel.date == day,
        )
        return float(session.scalar(stmt))

    def next_sequence(self, session: Session) -> int:
        stmt = select(func.coalesce(func.max(AllocationModel.sequence), 0))
        return int(session.scalar(stmt)) + 1
