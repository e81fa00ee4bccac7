"""Fax document composition, send flow and prescriber volume gate."""
