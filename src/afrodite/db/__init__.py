from afrodite.db.engine import get_engine, get_session_factory, init_engine
from afrodite.db.models import Base

__all__ = ["Base", "get_engine", "get_session_factory", "init_engine"]
