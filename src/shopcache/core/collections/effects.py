"""Effects of optimistic operations on a collection.

Every function here is pure: it takes a sequence of items and returns a new
tuple, never mutating the input items. Snapshots taken before an operation
therefore stay valid after it is applied.
"""

from typing import Any, Hashable, Optional, Sequence

from shopcache.config import CollectionPolicy
from shopcache.domain.types import Item, OperationKind, OptimisticOperation


def apply_operation(
    items: Sequence[Item],
    operation: OptimisticOperation,
    policy: CollectionPolicy,
) -> tuple[Item, ...]:
    """
    Return the collection as it looks after ``operation``.

    Rules:
        - ADD: an item with the same composite key gets its quantity increased
          by the added quantity (set-like collections keep it unchanged);
          otherwise the item is appended. An item without an id receives the
          operation id as its temporary id.
        - UPDATE: the item with a matching id gets the patch merged in;
          no-op if not found.
        - REMOVE: the item with a matching id is dropped; no-op if absent.
        - CLEAR: the collection becomes empty.

    Quantities are clamped to ``policy.max_quantity``.
    """
    if operation.kind is OperationKind.ADD:
        return _add(items, operation, policy)
    if operation.kind is OperationKind.UPDATE:
        return _update(items, operation, policy)
    if operation.kind is OperationKind.REMOVE:
        return tuple(item for item in items if item.get(policy.id_field) != operation.target_id)
    if operation.kind is OperationKind.CLEAR:
        return ()
    raise ValueError(f"Unknown operation kind: {operation.kind}")


def _add(items: Sequence[Item], operation: OptimisticOperation, policy: CollectionPolicy) -> tuple[Item, ...]:
    new_item = dict(operation.payload or {})
    if new_item.get(policy.id_field) is None:
        new_item[policy.id_field] = operation.id
    quantity_field = policy.quantity_field
    if quantity_field is not None:
        new_item[quantity_field] = policy.clamp_quantity(int(new_item.get(quantity_field, 1)))

    key = policy.composite_key(new_item)
    result = list(items)
    for index, existing in enumerate(result):
        if policy.composite_key(existing) != key:
            continue
        if quantity_field is None:
            return tuple(result)
        merged = dict(existing)
        merged[quantity_field] = policy.clamp_quantity(
            int(existing.get(quantity_field, 0)) + new_item[quantity_field]
        )
        result[index] = merged
        return tuple(result)

    result.append(new_item)
    return tuple(result)


def _update(items: Sequence[Item], operation: OptimisticOperation, policy: CollectionPolicy) -> tuple[Item, ...]:
    patch = dict(operation.payload or {})
    quantity_field = policy.quantity_field
    if quantity_field is not None and quantity_field in patch:
        patch[quantity_field] = policy.clamp_quantity(int(patch[quantity_field]))

    result = list(items)
    for index, existing in enumerate(result):
        if existing.get(policy.id_field) == operation.target_id:
            result[index] = {**existing, **patch}
            break
    return tuple(result)


def replace_id(items: Sequence[Item], old_id: Any, new_id: Any, policy: CollectionPolicy) -> tuple[Item, ...]:
    """Swap a temporary id for the server-confirmed one."""
    return tuple(
        {**item, policy.id_field: new_id} if item.get(policy.id_field) == old_id else item
        for item in items
    )


def has_unique_keys(items: Sequence[Item], policy: CollectionPolicy) -> bool:
    """Check that no two items share a composite key."""
    keys = [policy.composite_key(item) for item in items]
    return len(keys) == len(set(keys))


def lane_key(
    items: Sequence[Item],
    operation: OptimisticOperation,
    policy: CollectionPolicy,
) -> Optional[Hashable]:
    """
    Return the composite key an operation touches, or None for CLEAR.

    UPDATE and REMOVE address items by id, so their key is looked up in
    ``items`` (the state before the operation). An id that is not present
    yields an id-based lane so that operations on the same missing id are
    still ordered.
    """
    if operation.kind is OperationKind.CLEAR:
        return None
    if operation.kind is OperationKind.ADD:
        item = dict(operation.payload or {})
        if item.get(policy.id_field) is None:
            item[policy.id_field] = operation.id
        return policy.composite_key(item)
    for item in items:
        if item.get(policy.id_field) == operation.target_id:
            return policy.composite_key(item)
    return ("__id__", operation.target_id)
