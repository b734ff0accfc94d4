from typing import List
from sqlalchemy.orm import Session
from sqlalchemy import select

from tetrix.storage.models import TranslatorModel
from .base import BaseRepository


class TranslatorRepository(BaseRepository[TranslatorModel]):
    """Repository for translator profiles."""

    model = TranslatorModel
    fields = (
        'name', 'daily_capacity', 'schedule', 'divisions', 'language_pairs',
        'domains', 'active', 'seeking_work',
    )

    def delete(self, session: Session, id: str) -> bool:
        translator = self.get(session, id)
        if translator:
            # Soft delete, ledger rows keep their foreign key
            translator.active = False
            return True
        return False

    def list_active(self, session: Session) -> List[TranslatorModel]:
        stmt = select(TranslatorModel).where(TranslatorModel.active.is_(True)).order_by(TranslatorModel.id)
        return list(session.scalars(stmt).all())
