"""
Persistence package for Pack Calculator Service.

Stores the active pack size configuration and the history of computed
decompositions in PostgreSQL.
"""

from .postgres import PackCalcPersistence

__all__ = ["PackCalcPersistence"]
