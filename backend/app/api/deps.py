from collections.abc import Generator

from sqlalchemy.orm import Session

from app.db.session import get_sessionmaker


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session; commits on success, rolls back on any error."""
    db = get_sessionmaker()()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
