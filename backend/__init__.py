"""Prescriber fax request service."""
