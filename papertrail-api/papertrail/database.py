from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator

from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from papertrail.config import settings
from papertrail.logging_config import get_logger

logger = get_logger("database")

engine = create_engine(settings.database_url, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

Base = declarative_base()


def dialect_insert(db: Session, model):
    """INSERT construct with ON CONFLICT support for the bound dialect."""
    if db.get_bind().dialect.name == "sqlite":
        return sqlite.insert(model)
    return postgresql.insert(model)


def ensure_utc(dt: datetime | None) -> datetime | None:
    # SQLite hands timestamps back naive; everything we store is UTC.
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


@contextmanager
def store_transaction(session_factory: Callable[[], Session], store: str) -> Iterator[Session]:
    """Commit on success; driver failures surface as StorageUnavailable."""
    from papertrail.services.errors import StorageUnavailable

    db = session_factory()
    try:
        yield db
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"{store} store failure: {e}")
        raise StorageUnavailable(f"{store} store unavailable: {e}") from e
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db() -> None:
    import papertrail.models  # noqa: F401  registers tables on Base

    Base.metadata.create_all(bind=engine)
