from __future__ import annotations

from sqlalchemy.orm import Session


class BaseRepository:
    """Wraps a request-scoped session; services decide when to commit."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def add(self, instance: object) -> None:
        self.db.add(instance)

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
