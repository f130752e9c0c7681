"""
Content-addressed artifact store.

Rendered documents are persisted under the SHA-256 digest of their bytes.
The store is write-if-absent: a second ``store()`` of the same content is
a no-op and returns the same identifier, and an existing object is never
rewritten.

Layout:

    <root>/<64 hex chars>

Trust boundary:
- Identifiers arriving from HTTP requests are untrusted. They MUST pass
  ``is_hash()`` before ``path()`` is consulted; ``path()`` refuses anything
  else rather than resolving it.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Union

from gateway.app.errors import StorageUnavailable
from gateway.app.utils.hashing import compute_content_digest, is_content_digest

logger = logging.getLogger(__name__)


class ArtifactStore:
    """Filesystem-backed, content-addressed store for rendered output."""

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root).expanduser().resolve()

    # ------------------------------------------------------------------
    # Startup validation
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """
        Assert that the store root is a writable directory.

        A missing root is created. Any other failure raises
        StorageUnavailable so that startup aborts instead of failing on
        the first render.
        """
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageUnavailable(
                f"Cannot create storage root {self.root}: {exc}"
            ) from exc

        if not self.root.is_dir():
            raise StorageUnavailable(
                f"Storage root is not a directory: {self.root}"
            )
        if not os.access(self.root, os.W_OK):
            raise StorageUnavailable(
                f"Storage root is not writable: {self.root}"
            )

        logger.info("storage: root validated: %s", self.root)

    # ------------------------------------------------------------------
    # Identifiers
    # ------------------------------------------------------------------

    @staticmethod
    def is_hash(candidate: object) -> bool:
        return is_content_digest(candidate)

    def path(self, identifier: str) -> Path:
        """
        Map a well-formed identifier to its physical location.

        Raises ValueError for anything that is not a well-formed
        identifier; no path is ever built from such input.
        """
        if not self.is_hash(identifier):
            raise ValueError(f"Invalid artifact identifier: {identifier!r}")
        return self.root / identifier

    def exists(self, identifier: object) -> bool:
        if not self.is_hash(identifier):
            return False
        return self.path(identifier).is_file()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def store(self, content: bytes) -> str:
        """
        Persist ``content`` and return its identifier.

        The write goes to a temporary file in the store root and is
        renamed into place, so readers never observe a partial object.
        """
        identifier = compute_content_digest(content)
        final_path = self.path(identifier)

        if final_path.exists():
            logger.debug("storage: %s already present", identifier)
            return identifier

        try:
            fd, temp_path = tempfile.mkstemp(prefix=".tmp-", dir=str(self.root))
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(content)
                    handle.flush()
                    os.fsync(handle.fileno())
                # Concurrent writers of the same digest carry identical bytes.
                os.replace(temp_path, final_path)
            finally:
                if os.path.exists(temp_path):
                    os.unlink(temp_path)
        except OSError as exc:
            raise StorageUnavailable(
                f"Failed to store artifact {identifier}: {exc}"
            ) from exc

        logger.info(
            "artifact_stored",
            extra={"artifact_id": identifier, "size_bytes": len(content)},
        )
        return identifier

    def read(self, identifier: str) -> bytes:
        return self.path(identifier).read_bytes()
