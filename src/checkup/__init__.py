"""Checkup: a caching proxy for release metadata of code-hosting platforms."""
