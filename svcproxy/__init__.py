"""Building blocks for a node-local service proxy client."""

__version__ = "0.1.0"