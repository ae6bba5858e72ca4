"""Portcullis - warehouse sync dispatch control plane."""

__version__ = "0.1.0"
