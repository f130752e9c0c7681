"""
Content digests for rendered artifacts.

The artifact store is content-addressed: the identifier of a rendered
document is the digest of its bytes and nothing else.

IMPORTANT DESIGN RULE:
- This module hashes bytes, and bytes only.
- The identifier format is fixed (lowercase SHA-256 hex, 64 characters);
  the store's well-formedness check depends on it.
"""

import hashlib
import re
from typing import Union

DIGEST_LENGTH = 64

_DIGEST_PATTERN = re.compile(rf"[0-9a-f]{{{DIGEST_LENGTH}}}")


def compute_content_digest(content: Union[bytes, bytearray]) -> str:
    """
    Compute the content-addressed identifier of a rendered artifact.

    Identical bytes always produce the identical identifier.

    Returns:
        Lowercase SHA-256 hex digest, e.g. ``3b7c0e4c...``.
    """
    if not isinstance(content, (bytes, bytearray)):
        raise TypeError(
            "compute_content_digest expects bytes, "
            f"got {type(content).__name__}"
        )

    return hashlib.sha256(content).hexdigest()


def is_content_digest(candidate: object) -> bool:
    """Return True if ``candidate`` is a syntactically valid identifier."""
    if not isinstance(candidate, str):
        return False
    return _DIGEST_PATTERN.fullmatch(candidate) is not None
