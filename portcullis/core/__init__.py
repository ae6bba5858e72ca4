"""Portcullis core modules."""
