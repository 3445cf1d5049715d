"""Stacked branch management with recoverable history rewrites."""
