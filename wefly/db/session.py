from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from wefly.config import get_settings
from wefly.models.booking import Base


def make_engine(database_url: str, **kwargs):
    if database_url.startswith("sqlite"):
        # SQLite needs check_same_thread=False for the threaded web server; timeout bounds lock waits
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", 10)
        kwargs["connect_args"] = connect_args
    return create_engine(database_url, **kwargs)


def make_session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def init_db(engine):
    Base.metadata.create_all(bind=engine)


engine = make_engine(get_settings().DATABASE_URL)
SessionLocal = make_session_factory(engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
