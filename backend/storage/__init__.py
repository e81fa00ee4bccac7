"""Audit persistence."""
