from typing import List, Optional, Dict, Any
from sqlalchemy.orm import Session
from sqlalchemy import select, update

from tetrix.storage.models import TaskModel
from .base import BaseRepository


class TaskRepository(BaseRepository[TaskModel]):
    """Repository for task headers, with optimistic locking on update."""

    model = TaskModel
    fields = (
        'project_number', 'translator_id', 'total_hours', 'due_at', 'priority', 'mode',
        'window_start', 'window_end', 'language_pair', 'client', 'domain', 'morning_delivery',
    )
    order_by = 'due_at'

    def update(self, session: Session, id: str, updates: Dict[str, Any]) -> Optional[TaskModel]:
        task = super().update(session, id, updates)
        if task:
            task.version += 1
        return task

    def update_if_version(
        self,
        session: Session,
        id: str,
        updates: Dict[str, Any],
        expected_version: int
    ) -> bool:
        """
        Compare-and-set update. Returns False when the stored version
        no longer matches expected_version.
        """
        values = {name: updates[name] for name in self.fields if name in updates}
        values['version'] = expected_version + 1
        stmt = (
            update(TaskModel)
            .where(TaskModel.id == id, TaskModel.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        result = session.execute(stmt)
        return result.rowcount == 1

    def list_for_translator(self, session: Session, translator_id: str) -> List[TaskModel]:
        stmt = select(TaskModel).where(TaskModel.translator_id == translator_id).order_by(TaskModel.due_at)
        return list(session.scalars(stmt).all())
