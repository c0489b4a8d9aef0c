"""Crossrelay: two-sided chat relay with rich-text translation and edit/delete tracking."""

__version__ = "0.1.0"
