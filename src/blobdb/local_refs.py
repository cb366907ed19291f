"""Locally-scoped references to cached blob content.

A local reference is a ``blob:blobdb/<uuid>`` URL that resolves to bytes
held by the registry. It is only meaningful inside the process and the
BlobDB instance that minted it; callers should persist the blob path, never
the reference.

The registry holds at most one reference per blob path. Asking again for
the same content returns the same URL; new content for the path replaces
the old reference.
"""

import uuid

SCHEME = "blob:"
_PREFIX = f"{SCHEME}blobdb/"


def is_local_url(url: str) -> bool:
    """Return True if ``url`` is a locally-scoped reference."""
    return url.startswith(SCHEME)


class LocalReferenceRegistry:
    """Mints and resolves ``blob:`` URLs for in-process content."""

    def __init__(self) -> None:
        self._refs: dict[str, tuple[str, bytes]] = {}
        self._by_path: dict[str, str] = {}

    def create(self, path: str, content: bytes) -> str:
        """Return a reference to ``content`` cached under ``path``.

        Reuses the path's live reference when it holds the same bytes,
        otherwise revokes it and mints a new one.
        """
        url = self._by_path.get(path)
        if url is not None:
            if self._refs[url][1] == content:
                return url
            del self._refs[url]

        url = f"{_PREFIX}{uuid.uuid4()}"
        self._refs[url] = (path, bytes(content))
        self._by_path[path] = url
        return url

    def resolve(self, url: str) -> bytes:
        """Return the content behind ``url``.

        Raises:
            KeyError: If the URL was never minted here or has been revoked.
        """
        try:
            return self._refs[url][1]
        except KeyError:
            raise KeyError(f"Unknown or revoked local reference: {url}") from None

    def revoke(self, url: str) -> None:
        entry = self._refs.pop(url, None)
        if entry is not None:
            self._by_path.pop(entry[0], None)

    def revoke_path(self, path: str) -> None:
        """Drop the reference for ``path``, if any."""
        url = self._by_path.pop(path, None)
        if url is not None:
            del self._refs[url]

    def clear(self) -> None:
        self._refs.clear()
        self._by_path.clear()

    def __len__(self) -> int:
        return len(self._refs)
