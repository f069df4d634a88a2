"""Read-only query side, independent of the write path."""

from .resolver import Predicate, Query, QueryResolver, QueryRow, field_equals, field_in, where

__all__ = [
    "Predicate",
    "Query",
    "QueryResolver",
    "QueryRow",
    "field_equals",
    "field_in",
    "where",
]
