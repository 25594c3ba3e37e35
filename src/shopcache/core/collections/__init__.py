"""Pure collection algorithms: optimistic effects and reconciliation merge."""

from shopcache.core.collections.effects import (
    apply_operation,
    has_unique_keys,
    lane_key,
    replace_id,
)
from shopcache.core.collections.merge import merge_collections

__all__ = [
    "apply_operation",
    "has_unique_keys",
    "lane_key",
    "replace_id",
    "merge_collections",
]
