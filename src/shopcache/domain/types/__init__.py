"""Shared domain types."""

from shopcache.domain.types.entries import CacheEntry, CacheStats
from shopcache.domain.types.operations import (
    Item,
    OperationKind,
    OperationOutcome,
    OperationState,
    OptimisticOperation,
)

__all__ = [
    "CacheEntry",
    "CacheStats",
    "Item",
    "OperationKind",
    "OperationOutcome",
    "OperationState",
    "OptimisticOperation",
]
