from typing import Any, ClassVar, Dict, Generic, List, Optional, Tuple, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """
    Session-per-call CRUD over one mapped model.

    Subclasses name the model, the columns an update may touch and the
    column that orders listings.
    """

    model: ClassVar[Type[Any]]
    fields: ClassVar[Tuple[str, ...]] = ()
    order_by: ClassVar[str] = "id"

    def create(self, session: Session, entity: T) -> T:
        session.add(entity)
        session.flush()
        return entity

    def get(self, session: Session, id: str) -> Optional[T]:
        return session.get(self.model, id)

    def update(self, session: Session, id: str, updates: Dict[str, Any]) -> Optional[T]:
        row = self.get(session, id)
        if not row:
            return None
        for name in self.fields:
            if name in updates:
                setattr(row, name, updates[name])
        return row

    def delete(self, session: Session, id: str) -> bool:
        row = self.get(session, id)
        if not row:
            return False
        session.delete(row)
        session.flush()
        return True

    def list(self, session: Session, limit: int = 100, offset: int = 0) -> List[T]:
        stmt = select(self.model).order_by(getattr(self.model, self.order_by)).limit(limit).offset(offset)
        return list(session.scalars(stmt).all())
