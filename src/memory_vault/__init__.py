"""memory-vault: a persistent knowledge store for coding sessions."""

__version__ = "0.5.0"
