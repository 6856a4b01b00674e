"""Keeps scaffolded repositories in sync with the templates they were created from."""

__version__ = "0.1.0"
