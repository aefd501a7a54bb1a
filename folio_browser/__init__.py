"""Folio Browser - paginated browsing, sync and export of shareholder holdings."""

__version__ = "0.1.0"
