import os
from contextlib import contextmanager
from typing import Generator, Iterator

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker, Session

from bitbybit.core.errors import StorageError

load_dotenv()

# Use absolute path override via env if needed; fallback keeps local setup simple.
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./bitbybit.db")

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if "sqlite" in DATABASE_URL else {},
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def init_db() -> None:
    # Import models here so SQLAlchemy registers metadata before create_all().
    from bitbybit.models.book import Book  # noqa: F401
    from bitbybit.models.chapter import Chapter  # noqa: F401
    from bitbybit.models.section import Section  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db() -> Generator[Session, None, None]:
    # FastAPI dependency that provides/cleans a DB session per request.
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    Commit everything done inside the block as one transaction.
    Any SQLAlchemy failure rolls back and is re-raised as StorageError.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageError(str(e)) from e
    except Exception:
        db.rollback()
        raise
