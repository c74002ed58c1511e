"""fuzzfind - streaming fuzzy finder engine."""

__version__ = "0.1.0"
