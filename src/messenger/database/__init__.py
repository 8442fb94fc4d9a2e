from .base import Base
from .session import build_engine, engine_from_settings, build_session_factory, create_schema

__all__ = ["Base", "build_engine", "engine_from_settings", "build_session_factory", "create_schema"]
