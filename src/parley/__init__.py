"""Parley: multi-agent conversations with routed human-in-the-loop questions."""

__version__ = "0.1.0"
