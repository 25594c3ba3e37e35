"""Application layer: deduplicator, mutation engine, reconciler and facade."""

from shopcache.application.client import ResourceCache
from shopcache.application.dedup import RequestDeduplicator
from shopcache.application.engine import OperationHandle, OptimisticMutationEngine
from shopcache.application.reconciler import Reconciler

__all__ = [
    "ResourceCache",
    "RequestDeduplicator",
    "OptimisticMutationEngine",
    "OperationHandle",
    "Reconciler",
]
