"""Portcullis Database Package."""
from .session import Base, create_engine, create_session_factory, init_db

__all__ = ["Base", "create_engine", "create_session_factory", "init_db"]
