"""Anchor proxy HTTP API."""
