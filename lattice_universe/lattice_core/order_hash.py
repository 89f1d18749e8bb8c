"""
Deterministic hashing of computed lattices.

Provides:
- hash64: SHA-256 canonical hash truncated to 64-bit int

Used to fingerprint serialized results so that repeated runs of the same
configuration can be compared byte-for-byte. No use of Python's built-in
hash() (salted per process).
"""

import hashlib
import json
from typing import Any, NewType

import numpy as np

# Hash type (64-bit from SHA-256)
Hash64 = NewType("Hash64", int)


def _json_default(obj: Any) -> Any:
    """Encode numpy scalars/arrays and anything else opaque in meta lists."""
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    return repr(obj)


def hash64(obj: Any) -> Hash64:
    """
    Deterministic 64-bit hash using SHA-256 on canonical JSON.

    - Uses canonical JSON serialization (sorted keys, no whitespace)
    - SHA-256 for determinism across processes
    - Truncates to 64-bit integer (first 8 bytes)

    Args:
        obj: Any JSON-serializable Python object (numpy scalars allowed)

    Returns:
        64-bit integer hash (0 to 2^64-1)

    Examples:
        >>> hash64([1, 2, 3]) == hash64([1, 2, 3])
        True
        >>> hash64({"a": 1, "b": 2}) == hash64({"b": 2, "a": 1})
        True
    """
    canonical_json = json.dumps(
        obj, sort_keys=True, separators=(",", ":"), default=_json_default
    )

    sha = hashlib.sha256(canonical_json.encode("utf-8"))

    # Take first 8 bytes (64 bits) as integer
    hash_bytes = sha.digest()[:8]
    hash_int = int.from_bytes(hash_bytes, byteorder="big", signed=False)

    return Hash64(hash_int)
