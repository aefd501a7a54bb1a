"""Utility helpers for Folio Browser."""
