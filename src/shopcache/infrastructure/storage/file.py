"""File-based durable storage.

Each record is stored as a separate JSON file in a directory. File names are
derived from the key with URL-style quoting so that any key, including
resource paths with ``/`` and ``?``, maps to a safe and reversible name.
"""

import json
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote

from shopcache.logger import get_logger

logger = get_logger(__name__)


class FileStorage:
    """JSON-file DurableStorage for local persistence.

    Features:
    - Automatic directory creation
    - Atomic writes (write to temp, then rename)
    - Reversible key <-> filename mapping

    Errors are raised as ``OSError`` / ``ValueError``; the cache store treats
    them as soft failures.

    Example:
        >>> storage = FileStorage("~/.shopcache")
        >>> storage.write("cache:/products?page=2", {"value": [], "expires_at": 1.0})
        >>> # Creates: ~/.shopcache/cache%3A%2Fproducts%3Fpage%3D2.json
    """

    def __init__(self, base_dir: str | Path = "~/.shopcache"):
        """Initialize file-based storage.

        Args:
            base_dir: Directory for the record files. Supports ~ expansion
                and relative paths. Created if it doesn't exist.

        Raises:
            OSError: If the directory cannot be created
        """
        self.base_dir = Path(base_dir).expanduser().resolve()
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create directory {self.base_dir}: {e}")
            raise
        logger.info(f"FileStorage initialized: base_dir={self.base_dir}")

    def _key_to_filename(self, key: str) -> Path:
        """Convert a key to a filesystem-safe path.

        Example:
            >>> storage._key_to_filename("cache:/cart")
            PosixPath('/home/user/.shopcache/cache%3A%2Fcart.json')
        """
        return self.base_dir / f"{quote(key, safe='')}.json"

    def _filename_to_key(self, filepath: Path) -> str:
        return unquote(filepath.stem)

    def read(self, key: str) -> dict[str, Any] | None:
        """Load a record.

        Raises:
            OSError: If the file cannot be read
            ValueError: If the JSON is corrupted
        """
        filepath = self._key_to_filename(key)
        if not filepath.exists():
            return None
        try:
            with open(filepath, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Corrupted JSON in record file '{filepath}': {e}")
            raise ValueError(f"Corrupted record file: {e}") from e

    def write(self, key: str, record: dict[str, Any]) -> None:
        """Save a record atomically.

        Raises:
            OSError: If the file cannot be written
            ValueError: If the record is not JSON-serializable
        """
        filepath = self._key_to_filename(key)
        temp_filepath = filepath.with_suffix(".json.tmp")

        try:
            with open(temp_filepath, "w", encoding="utf-8") as f:
                json.dump(record, f, ensure_ascii=False)
            temp_filepath.replace(filepath)
        except (TypeError, ValueError) as e:
            temp_filepath.unlink(missing_ok=True)
            raise ValueError(f"Cannot serialize record for '{key}': {e}") from e
        except OSError:
            temp_filepath.unlink(missing_ok=True)
            raise

    def delete(self, key: str) -> None:
        """Delete a record. Silently succeeds if it doesn't exist."""
        self._key_to_filename(key).unlink(missing_ok=True)

    def keys(self, prefix: str | None = None) -> list[str]:
        keys = [self._filename_to_key(f) for f in self.base_dir.glob("*.json")]
        if prefix is not None:
            keys = [k for k in keys if k.startswith(prefix)]
        return sorted(keys)
