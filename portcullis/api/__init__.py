"""Portcullis HTTP API."""
