"""Building blocks of a LevelDB-style storage engine: comparers, write batches and caches."""

__version__ = "0.1.0"
__all__ = ["batch", "cache", "comparer", "lru"]