"""Database layer: engine, session, ORM base."""

from lockmarket_core.db.base import Base
from lockmarket_core.db.engine import get_engine, get_session, init_engine

__all__ = ["Base", "get_engine", "get_session", "init_engine"]
