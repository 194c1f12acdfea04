"""Decide which urls may be stored in history and shown as links."""

from __future__ import annotations

from urllib.parse import urlsplit

_ALLOWED_SCHEMES = {"http", "https", "ftp"}

# about: pages that are safe to link to from the new tab page.
_ALLOWED_ABOUT_PAGES = {"newtab", "home", "welcome"}


class LinkChecker:
    """Pure allow/deny classifier for link urls.

    Web schemes with a host are accepted, as are a few ``about:`` pages.
    Everything else (``file``, ``resource``, ``javascript``, ``data``,
    ``chrome``, other ``about:`` pages, unknown schemes, malformed input)
    is rejected.
    """

    @staticmethod
    def is_eligible(url: str) -> bool:
        if not isinstance(url, str) or not url.strip():
            return False
        try:
            parsed = urlsplit(url.strip())
        except ValueError:
            return False

        scheme = parsed.scheme.lower()
        if scheme in _ALLOWED_SCHEMES:
            return bool(parsed.hostname)
        if scheme == "about":
            return parsed.path.lower() in _ALLOWED_ABOUT_PAGES
        return False
