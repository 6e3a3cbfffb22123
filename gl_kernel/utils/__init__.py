"""Utility modules for the posting kernel."""

from gl_kernel.utils.hashing import canonicalize_json, hash_payload, hash_posting_request

__all__ = [
    "canonicalize_json",
    "hash_payload",
    "hash_posting_request",
]
