from pathlib import Path

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    pass


def build_engine(database_url: str) -> Engine:
    connect_args = {}
    kwargs = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if database_url in {"sqlite://", "sqlite:///:memory:"}:
            # one shared connection, otherwise each threadpool worker sees an empty database
            kwargs["poolclass"] = StaticPool
        elif database_url.startswith("sqlite:///"):
            Path(database_url.replace("sqlite:///", "", 1)).expanduser().parent.mkdir(parents=True, exist_ok=True)
    return create_engine(database_url, connect_args=connect_args, **kwargs)


def build_sessionmaker(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


def init_db(engine: Engine) -> None:
    from legalbridge import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
