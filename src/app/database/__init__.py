from app.database.base import Base, UpdatedAtMixin
from app.database.engine import build_engine, build_session_factory

__all__ = ["Base", "UpdatedAtMixin", "build_engine", "build_session_factory"]
