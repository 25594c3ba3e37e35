"""Resource-type TTL policy."""

from typing import Iterable

from shopcache.config import CacheConfig, TtlRule


class TtlPolicy:
    """Resolve the TTL of a resource path from an ordered rule list.

    The first rule whose prefix occurs in the path wins; paths no rule
    matches get the default TTL.

    Example:
        >>> policy = TtlPolicy([TtlRule(prefix="/cart", ttl=60)], default_ttl=300)
        >>> policy.ttl_for("/cart/items")
        60
        >>> policy.ttl_for("/orders")
        300
    """

    def __init__(self, rules: Iterable[TtlRule] = (), default_ttl: float = 300.0) -> None:
        if default_ttl <= 0:
            raise ValueError("default_ttl must be > 0")
        self.rules = tuple(rules)
        self.default_ttl = default_ttl

    @classmethod
    def from_config(cls, config: CacheConfig) -> "TtlPolicy":
        return cls(config.ttl_rules, config.default_ttl)

    def ttl_for(self, resource_path: str) -> float:
        for rule in self.rules:
            if rule.prefix in resource_path:
                return rule.ttl
        return self.default_ttl
