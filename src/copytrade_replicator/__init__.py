"""Copy-trade replicator: mirror tracked wallet activity into subscriber trades."""

__version__ = "0.1.0"
