from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def make_engine(url: str, echo: bool = False):
    kwargs = {"echo": echo}
    if url.startswith("sqlite"):
        # Probes and the API touch the database from worker threads.
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


def make_session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine):
    from . import models  # noqa: F401  register tables on Base.metadata

    Base.metadata.create_all(bind=engine)
