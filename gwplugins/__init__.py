"""Plugin registry, prioritised hook chains, a keyed pool and usage report validation."""

__version__ = "0.1.0"

__all__ = ["hooks", "plugin", "pool", "registry", "usagereport", "utils"]