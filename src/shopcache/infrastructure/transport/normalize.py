"""Normalization of backend response envelopes.

The storefront API answers either with a bare payload or with an envelope
such as ``{"success": true, "data": {...}, "message": "..."}``, sometimes
nested twice. The cache layer only ever sees the canonical payload.
"""

from typing import Any, Mapping

# Keys that may accompany "data" in an envelope
ENVELOPE_KEYS = frozenset({"data", "success", "message", "status", "meta", "errors"})


def _is_envelope(raw: Any) -> bool:
    return isinstance(raw, Mapping) and "data" in raw and set(raw) <= ENVELOPE_KEYS


def normalize_response(raw: Any) -> Any:
    """
    Unwrap response envelopes down to the payload.

    Mappings that carry keys outside the envelope vocabulary are payloads in
    their own right (e.g. a product with a ``data`` attribute) and are
    returned untouched.

    Example:
        >>> normalize_response({"success": True, "data": {"data": [1, 2]}})
        [1, 2]
        >>> normalize_response({"id": 1, "data": "x"})
        {'id': 1, 'data': 'x'}
    """
    while _is_envelope(raw):
        raw = raw["data"]
    return raw
