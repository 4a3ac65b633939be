"""self-refer: markdown project memory with fuzzy search."""

__version__ = "0.1.0"
