"""Url eligibility checks for stored and displayed links."""

from frecent_links.links.checker import LinkChecker

__all__ = ["LinkChecker"]
