"""Relational persistence for projects, products and views."""

from .sql import Base, SqlAlchemyStore, create_store_engine

__all__ = ["Base", "SqlAlchemyStore", "create_store_engine"]
