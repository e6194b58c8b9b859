"""Utility modules for sqlalchemy-bulk-upsert."""

from .config import Config, UpsertConfig

__all__ = ["Config", "UpsertConfig"]
