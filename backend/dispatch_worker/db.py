from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from . import config
from .exceptions import ConfigError

SessionLocal = sessionmaker(autocommit=False, autoflush=False)
Base = declarative_base()


@lru_cache(maxsize=1)
def get_engine():
    if not config.SUPABASE_DB_URL:
        raise ConfigError("SUPABASE_DB_URL is not set")
    engine = create_engine(
        config.SUPABASE_DB_URL,
        pool_pre_ping=True,
    )
    SessionLocal.configure(bind=engine)
    return engine


# Dependency
def get_db():
    get_engine()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
