"""Medlink Triage - HTTP API package."""
