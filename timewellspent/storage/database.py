from datetime import timezone

from sqlalchemy import DateTime, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator
from contextlib import contextmanager
from typing import Generator

from timewellspent.config.settings import settings

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on top of SQLite's naive storage."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


def make_session_factory(url: str) -> sessionmaker:
    """Build an engine + session factory and create every table on it."""
    kwargs = {}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}  # SQLite specific
        if ":memory:" in url or url == "sqlite://":
            kwargs["poolclass"] = StaticPool
    bind = create_engine(url, echo=False, **kwargs)
    _register_models()
    Base.metadata.create_all(bind=bind)
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False},  # SQLite specific
    echo=False,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def _register_models():
    import timewellspent.models.records  # noqa: F401
    import timewellspent.models.activity  # noqa: F401
    import timewellspent.models.settings  # noqa: F401


def init_db():
    """Create all tables. Call once on startup."""
    _register_models()
    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

