"""Pure building blocks of the cache layer."""
