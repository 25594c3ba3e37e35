"""Cache layer configuration.

Configuration is expressed as pydantic models so that values loaded from JSON
files or environment variables are validated before the cache is built.
"""

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shopcache.logger import get_logger

logger = get_logger("config")


class TtlRule(BaseModel):
    """Maps every resource path containing ``prefix`` to a TTL in seconds."""

    model_config = ConfigDict(frozen=True)

    prefix: str = Field(..., min_length=1, description="Substring matched against the resource path")
    ttl: float = Field(..., gt=0, description="Time-to-live in seconds")


# Order matters: the first matching rule wins, so item paths come before lists.
DEFAULT_TTL_RULES: tuple[TtlRule, ...] = (
    TtlRule(prefix="/products/", ttl=10 * 60),
    TtlRule(prefix="/products", ttl=5 * 60),
    TtlRule(prefix="/categories", ttl=15 * 60),
    TtlRule(prefix="/featured", ttl=3 * 60),
    TtlRule(prefix="/search", ttl=2 * 60),
    TtlRule(prefix="/user", ttl=5 * 60),
    TtlRule(prefix="/cart", ttl=1 * 60),
    TtlRule(prefix="/wishlist", ttl=15 * 60),
)


class CollectionPolicy(BaseModel):
    """Identity and bounds for one locally held collection.

    Attributes:
        read_path: Resource path the collection is read from. Cache entries
            whose key contains it are invalidated after a confirmed mutation.
        write_path: Resource path mutations are written to (defaults to read_path)
        key_fields: Fields forming the composite key of an item
        id_field: Field holding the item identifier (temporary or server-assigned)
        quantity_field: Field holding the line quantity. ``None`` makes the
            collection set-like: adding an existing key leaves it unchanged.
        max_quantity: Optional per-line cap; larger quantities are clamped
    """

    model_config = ConfigDict(frozen=True)

    read_path: str
    write_path: Optional[str] = None
    key_fields: tuple[str, ...] = Field(default=("id",), min_length=1)
    id_field: str = "id"
    quantity_field: Optional[str] = "quantity"
    max_quantity: Optional[int] = Field(default=None, ge=1)

    @property
    def resolved_write_path(self) -> str:
        return self.write_path or self.read_path

    def composite_key(self, item: Mapping[str, Any]) -> tuple[Any, ...]:
        """Return the composite key identifying ``item`` within the collection."""
        return tuple(item.get(name) for name in self.key_fields)

    def clamp_quantity(self, quantity: int) -> int:
        """Clamp a quantity to ``max_quantity`` when a cap is configured."""
        if self.max_quantity is not None and quantity > self.max_quantity:
            return self.max_quantity
        return quantity


class CacheConfig(BaseModel):
    """Settings for the whole cache layer.

    Attributes:
        capacity: Maximum number of entries in the volatile tier
        default_ttl: TTL in seconds for paths no rule matches
        ttl_rules: Path-substring to TTL rules, first match wins
        namespace: Prefix of durable-tier records
        storage_dir: Directory for file-backed durable storage (None = in memory)
        strict_invariants: Raise on invariant violations instead of logging them
        collections: Collection policies keyed by collection key
    """

    model_config = ConfigDict(frozen=True)

    capacity: int = Field(default=100, ge=1)
    default_ttl: float = Field(default=5 * 60, gt=0)
    ttl_rules: tuple[TtlRule, ...] = DEFAULT_TTL_RULES
    namespace: str = Field(default="cache:", min_length=1)
    storage_dir: Optional[str] = None
    strict_invariants: bool = False
    collections: dict[str, CollectionPolicy] = Field(default_factory=dict)


def load_config(config_path: str | Path) -> CacheConfig:
    """
    Load cache configuration from a JSON file.

    Args:
        config_path: Path to the JSON configuration file

    Returns:
        CacheConfig: Parsed configuration object

    Raises:
        FileNotFoundError: If the configuration file doesn't exist
        json.JSONDecodeError: If the JSON file is invalid
        ValidationError: If the configuration structure is invalid
    """
    config_path = Path(config_path)

    if not config_path.exists():
        error_msg = f"Cache configuration file not found: {config_path}"
        logger.error(error_msg)
        raise FileNotFoundError(error_msg)

    logger.info(f"Loading cache configuration from: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON in configuration file {config_path}: {e}")
        raise

    try:
        config = CacheConfig(**data)
    except ValidationError as e:
        logger.error(f"Invalid configuration structure in {config_path}: {e}")
        raise

    logger.info(
        f"Loaded cache configuration: capacity={config.capacity}, "
        f"rules={len(config.ttl_rules)}, collections={len(config.collections)}"
    )
    return config


_TRUE_VALUES = {"1", "true", "yes", "on"}


def load_config_from_env(environ: Mapping[str, str]) -> CacheConfig:
    """
    Build configuration from ``SHOPCACHE_*`` environment variables.

    Unset variables keep their defaults. Recognised variables:
    ``SHOPCACHE_CAPACITY``, ``SHOPCACHE_DEFAULT_TTL``, ``SHOPCACHE_NAMESPACE``,
    ``SHOPCACHE_STORAGE_DIR``, ``SHOPCACHE_STRICT_INVARIANTS``.

    Args:
        environ: Environment mapping (e.g. ``os.environ``)

    Returns:
        CacheConfig

    Raises:
        ValidationError: If a value fails validation (a ValueError subclass)
    """
    values: dict[str, Any] = {}
    if environ.get("SHOPCACHE_CAPACITY"):
        values["capacity"] = environ["SHOPCACHE_CAPACITY"]
    if environ.get("SHOPCACHE_DEFAULT_TTL"):
        values["default_ttl"] = environ["SHOPCACHE_DEFAULT_TTL"]
    if environ.get("SHOPCACHE_NAMESPACE"):
        values["namespace"] = environ["SHOPCACHE_NAMESPACE"]
    if environ.get("SHOPCACHE_STORAGE_DIR"):
        values["storage_dir"] = environ["SHOPCACHE_STORAGE_DIR"]
    if environ.get("SHOPCACHE_STRICT_INVARIANTS"):
        values["strict_invariants"] = environ["SHOPCACHE_STRICT_INVARIANTS"].lower() in _TRUE_VALUES

    # Pydantic coerces the numeric strings
    return CacheConfig(**values)
