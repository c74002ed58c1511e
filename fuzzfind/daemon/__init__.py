"""Finder engine: sources, scoring, publication and the session controller."""
