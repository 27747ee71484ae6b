"""Residue links AI agent conversations to the git commits they produced."""

__version__ = "0.1.0"

__all__ = ["__version__"]
