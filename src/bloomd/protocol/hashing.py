"""
Key pre-hashing.

When a client is built with pre_hash_keys=True every key is replaced by
its SHA-1 hex digest before it is placed on the wire. The digest is 40
lowercase hex characters, so keys of any length or content (spaces,
newlines, non-ASCII) become safe single protocol tokens.
"""

import hashlib


DIGEST_LENGTH = 40


def hash_key(key: str) -> str:
    """Return the fixed-width hex digest used in place of `key`."""
    return hashlib.sha1(key.encode("utf-8")).hexdigest()
