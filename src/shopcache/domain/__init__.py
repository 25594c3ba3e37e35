"""Domain layer: protocols, value types, errors and events."""
