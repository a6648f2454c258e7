"""Database engine, session factory and schema setup for the tutor store.

DATABASE_URL picks the backend. SQLite is fine for a single node; concurrent
writers wait on its lock for up to SQLITE_BUSY_TIMEOUT seconds.
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from tutor.config import settings

SQLITE_BUSY_TIMEOUT = 15

Base = declarative_base()


def make_engine(url: str, **overrides) -> Engine:
    if url.startswith("sqlite"):
        options: dict = {
            "connect_args": {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
        }
    else:
        options = {"pool_size": 10, "max_overflow": 20, "pool_pre_ping": True}
    options.update(overrides)
    return create_engine(url, **options)


def session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


engine = make_engine(settings.DATABASE_URL)
SessionLocal = session_factory(engine)


def create_tables(bind: Engine = engine) -> None:
    """Create every tutor table that does not exist yet."""
    import tutor.models  # noqa: F401  (registers the tables on Base)

    Base.metadata.create_all(bind=bind)


def get_db():
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()
