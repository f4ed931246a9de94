"""Signage display agent: keeps one unattended display in sync with the server."""
