"""
Utility functions shared across shopcache.
"""

import json
import os
import time
import uuid
from typing import Any, Callable

# A clock returns the current time in seconds. Wall-clock time is used because
# expiry timestamps are persisted to the durable tier and read back later.
Clock = Callable[[], float]


def system_clock() -> float:
    """Return the current Unix timestamp in seconds."""
    return time.time()


def get_project_root() -> str:
    """
    Get the project root directory (parent of src/shopcache).

    Returns:
        Absolute path to the project root directory
    """
    return os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def canonical_json(value: Any) -> str:
    """
    Serialize a value to JSON with sorted keys and no insignificant whitespace.

    Two structurally equal values always serialize to the same string, which
    makes the result usable as part of a cache or request key. Values that are
    not JSON-native fall back to their ``str()`` form.

    Args:
        value: Any JSON-like value

    Returns:
        Canonical JSON string
    """
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str, ensure_ascii=False)


def generate_temp_id() -> str:
    """
    Generate a temporary client-side identifier.

    The ``tmp-`` prefix keeps it distinct from any server-assigned id.

    Returns:
        Identifier like ``tmp-3f2a9c...``
    """
    return f"tmp-{uuid.uuid4().hex}"


def is_temp_id(value: Any) -> bool:
    """Check whether a value was produced by :func:`generate_temp_id`."""
    return isinstance(value, str) and value.startswith("tmp-")
