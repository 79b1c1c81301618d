"""Shelfguard: request admission and query filtering for the book club API."""

__version__ = "1.0.0"
