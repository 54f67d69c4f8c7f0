"""Rewrite asset URLs in API payloads to the client's current origin."""

import logging
import re
from urllib.parse import urlsplit, urlunsplit

log = logging.getLogger(__name__)

_LOCALHOST_RE = re.compile(r"^https?://(localhost|127\.0\.0\.1)(:\d+)?(/.*)?$", re.IGNORECASE)

_RELATIVE_ASSET_RES = (
    re.compile(r"^/?storage/", re.IGNORECASE),
    re.compile(r"^/?uploads/", re.IGNORECASE),
    re.compile(r"^/?media/", re.IGNORECASE),
)

_ASSET_KEY_PARTS = ("avatar", "image", "thumbnail")


def is_asset_key(key) -> bool:
    if not isinstance(key, str):
        return False
    lower = key.lower()
    return (
        any(part in lower for part in _ASSET_KEY_PARTS)
        or lower == "url"
        or lower.endswith("_url")
    )


class ResponseNormalizer:
    def __init__(self, origin: str):
        self._origin = origin.rstrip("/")
        parts = urlsplit(self._origin)
        self._scheme = parts.scheme or "https"
        self._host = parts.netloc

    @property
    def origin(self) -> str:
        return self._origin

    def normalize_url(self, value: str) -> str:
        if not value:
            return value
        try:
            if _LOCALHOST_RE.match(value):
                url = urlsplit(value)
                return urlunsplit((self._scheme, self._host, url.path, url.query, url.fragment))

            if value.startswith("http://") and self._scheme == "https":
                url = urlsplit(value)
                if url.netloc == self._host:
                    return urlunsplit(("https", url.netloc, url.path, url.query, url.fragment))

            for pattern in _RELATIVE_ASSET_RES:
                if pattern.match(value):
                    path = value if value.startswith("/") else f"/{value}"
                    return f"{self._origin}{path}"
        except ValueError:
            log.debug("Leaving unparsable URL as is: %r", value)
        return value

    def __call__(self, payload):
        """Return a normalized copy of ``payload``; the input is left untouched."""
        return self._walk(payload, {})

    def _walk(self, value, seen: dict):
        if isinstance(value, str):
            return self.normalize_url(value)
        if not isinstance(value, (dict, list)):
            return value
        if id(value) in seen:
            return seen[id(value)]

        if isinstance(value, list):
            out = []
            seen[id(value)] = out
            out.extend(self._walk(item, seen) for item in value)
            return out

        out = {}
        seen[id(value)] = out
        for key, item in value.items():
            if isinstance(item, str) and is_asset_key(key):
                out[key] = self.normalize_url(item)
            else:
                out[key] = self._walk(item, seen)
        return out
