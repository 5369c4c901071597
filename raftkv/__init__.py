"""A simplified Raft node with a replicated key-value store and a cluster simulation."""

__version__ = "0.1.0"
__all__ = ["core_types", "simulation"]