"""Tests for the error taxonomy and invariant checks."""

import pytest

from shopcache.domain.errors import (
    CacheMiss,
    InvariantViolation,
    PersistenceSoftFailure,
    ShopCacheError,
    TransportFailure,
    check_invariant,
)
from shopcache.domain.types import OperationOutcome


class TestErrors:
    def test_hierarchy(self):
        cause = ConnectionError("reset")
        failure = TransportFailure("/cart", "POST", cause)

        assert isinstance(failure, ShopCacheError)
        assert failure.cause is cause
        assert str(failure) == "POST /cart failed: reset"
        assert isinstance(PersistenceSoftFailure("k", OSError("full")), ShopCacheError)

    def test_check_invariant(self):
        assert check_invariant(True, "never shown", strict=True) is True
        assert check_invariant(False, "collision", strict=False, collection="cart") is False
        with pytest.raises(InvariantViolation, match="collection='cart'"):
            check_invariant(False, "collision", strict=True, collection="cart")

    def test_outcome(self):
        assert OperationOutcome.success("op", {"id": 1}).raise_for_failure() == {"id": 1}
        failure = TransportFailure("/cart", "DELETE", OSError("x"))
        with pytest.raises(TransportFailure):
            OperationOutcome.failure("op", failure).raise_for_failure()

    def test_cache_miss_carries_key(self):
        miss = CacheMiss("/cart")
        assert miss.key == "/cart"
        assert isinstance(miss, ShopCacheError)
