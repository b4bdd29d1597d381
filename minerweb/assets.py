"""
minerweb - Asset Resolver
===========================
Maps URL paths under /assets/ to files inside the asset root directory.

The path comes straight from the client, so every lookup is normalised and
checked against the real path of the root. Anything that would resolve
outside the root, a directory, or a missing file all produce the same
result (None) and the router answers each with the same 404.
"""

import mimetypes
import os
from dataclasses import dataclass


@dataclass
class Asset:
    data: bytes
    media_type: str


class AssetResolver:
    """
    Serves static files from a single root directory.

    Attributes:
        root: Real (symlink-resolved) absolute path of the asset directory.
    """

    def __init__(self, root: str):
        self.root = os.path.realpath(root)

    def resolve(self, path: str) -> Asset | None:
        """
        Load the asset at a URL-relative path.

        Args:
            path: Path relative to the asset root, as taken from the URL.

        Returns:
            The file content and its media type, or None if the path is
            missing, not a regular file, or escapes the root.
        """
        full_path = self._contained_path(path)
        if full_path is None or not os.path.isfile(full_path):
            return None

        try:
            with open(full_path, "rb") as f:
                data = f.read()
        except OSError:
            return None

        media_type, _ = mimetypes.guess_type(full_path)
        return Asset(data=data, media_type=media_type or "application/octet-stream")

    def _contained_path(self, path: str) -> str | None:
        """Return the real path for a request path, or None if it leaves the root."""
        if not path or "\x00" in path:
            return None

        relative = path.replace("\\", "/").lstrip("/")
        candidate = os.path.realpath(os.path.join(self.root, relative))
        if os.path.commonpath([self.root, candidate]) != self.root:
            return None
        return candidate
