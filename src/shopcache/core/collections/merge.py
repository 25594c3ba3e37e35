"""Reconciliation merge of local and server collections."""

from typing import Callable, Hashable, Sequence

from shopcache.domain.types import Item


def merge_collections(
    local_items: Sequence[Item],
    server_items: Sequence[Item],
    key: Callable[[Item], Hashable],
) -> list[Item]:
    """
    Merge a locally held collection into the server's version of it.

    The server is authoritative: when both sides hold an item with the same
    composite key, the server item wins outright and quantities are not
    summed. Local items the server does not know are appended unchanged.
    The result lists server items in their original order, then local-only
    items in theirs.

    Because presence is checked by composite key, merging the result against
    the same server snapshot again yields the same result.

    Example:
        >>> merge_collections([{"id": 1}, {"id": 2}], [{"id": 2}, {"id": 3}], key=lambda i: i["id"])
        [{'id': 2}, {'id': 3}, {'id': 1}]
    """
    merged: dict[Hashable, Item] = {}
    for item in server_items:
        # A duplicated server line keeps its first occurrence
        merged.setdefault(key(item), item)
    for item in local_items:
        merged.setdefault(key(item), item)
    return list(merged.values())
