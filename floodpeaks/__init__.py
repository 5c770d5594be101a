"""Flood peak event cache for tide/flood gauge sites."""

__version__ = "1.0.0"
