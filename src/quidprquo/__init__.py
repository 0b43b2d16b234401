"""Mutual pull-request approval exchange."""

__version__ = "0.1.0"
