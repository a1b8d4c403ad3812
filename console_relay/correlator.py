"""Maps captured locations (file URIs, URLs, absolute or relative paths) to local files."""

import os
import re
from urllib.parse import unquote, urlparse

from console_relay.config import PathMapping
from console_relay.models import Location

URL_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
_DRIVE_RE = re.compile(r"^/[A-Za-z]:")


def file_uri_to_path(uri: str) -> str | None:
    """Decode a file:// URI into a filesystem path."""
    try:
        parsed = urlparse(uri)
    except ValueError:
        return None
    path = unquote(parsed.path)
    if not path:
        return None
    if _DRIVE_RE.match(path):
        path = path[1:]
    if parsed.netloc and parsed.netloc != "localhost":
        path = f"//{parsed.netloc}{path}"
    return os.path.normpath(path)


class SourceCorrelator:
    """Resolves a location to an existing local file, or None.

    Strategies, first hit wins:

    1. ``file://`` URI that exists on disk
    2. first path mapping whose url prefix matches, as an absolute path or
       joined against each workspace root
    3. URL path component joined against each workspace root
    4. absolute path that exists
    5. relative path joined against each workspace root

    Nothing is cached; every call checks the filesystem again.
    """

    def __init__(self, path_mappings=(), workspace_roots=()):
        self._mappings: tuple[PathMapping, ...] = tuple(path_mappings)
        self._roots: tuple[str, ...] = tuple(os.path.normpath(r) for r in workspace_roots)

    @property
    def workspace_roots(self) -> tuple[str, ...]:
        return self._roots

    def update(self, path_mappings=None, workspace_roots=None):
        if path_mappings is not None:
            self._mappings = tuple(path_mappings)
        if workspace_roots is not None:
            self._roots = tuple(os.path.normpath(r) for r in workspace_roots)

    def resolve(self, location) -> str | None:
        raw = location.file if isinstance(location, Location) else location
        if not raw or not isinstance(raw, str):
            return None

        if raw.startswith("file://"):
            path = file_uri_to_path(raw)
            if path and os.path.exists(path):
                return path

        mapped = self._apply_mappings(raw)
        if mapped:
            return mapped

        if URL_RE.match(raw):
            return self._resolve_url_path(raw)

        if os.path.isabs(raw):
            return os.path.normpath(raw) if os.path.exists(raw) else None

        return self._join_roots(raw)

    def _apply_mappings(self, raw: str) -> str | None:
        for mapping in self._mappings:
            if not raw.startswith(mapping.url_prefix):
                continue
            replaced = mapping.local_path_prefix + raw[len(mapping.url_prefix):]
            if os.path.isabs(replaced):
                if os.path.exists(replaced):
                    return os.path.normpath(replaced)
            else:
                candidate = self._join_roots(replaced)
                if candidate:
                    return candidate
        return None

    def _resolve_url_path(self, raw: str) -> str | None:
        try:
            url_path = unquote(urlparse(raw).path or "")
        except ValueError:
            return None
        url_path = url_path.lstrip("/")
        if not url_path:
            return None
        return self._join_roots(url_path)

    def _join_roots(self, relative: str) -> str | None:
        for root in self._roots:
            candidate = os.path.normpath(os.path.join(root, relative))
            if os.path.exists(candidate):
                return candidate
        return None

    def shorten(self, path: str | None) -> str:
        """Path relative to the first workspace root containing it, for display."""
        if not path:
            return ""
        for root in self._roots:
            if path == root or path.startswith(root.rstrip(os.sep) + os.sep):
                return os.path.relpath(path, root)
        return path
