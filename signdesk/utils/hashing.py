"""
Document digests.

The same bytes always produce the same digest; callers compare the stored
digest against a delivered file to prove it was not altered.
"""

import hashlib


def sha256_hex(content: bytes) -> str:
    """Return the lowercase hex SHA-256 digest of raw document bytes."""
    return hashlib.sha256(content).hexdigest()


def digests_match(content: bytes, expected_hash: str) -> bool:
    if not expected_hash:
        return False
    return sha256_hex(content) == expected_hash.lower()
