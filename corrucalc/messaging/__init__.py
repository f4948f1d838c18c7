"""Outbound customer messaging."""
