"""Sync dispatch pipeline."""
