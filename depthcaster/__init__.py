"""Depthcaster — curated conversations on Farcaster."""

__version__ = "0.1.0"
